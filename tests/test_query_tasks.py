"""Tests for the task query engine."""

import time
from datetime import date

import pytest

from workboard.errors import AccessError, InputValidationError, QueryTimeoutError
from workboard.policy import Role
from workboard.primitives import Priority, Status
from workboard.query import TaskQueryEngine
from workboard.schemas import EpicCreate, LabelCreate, ProjectCreate, TaskCreate, TaskFilters


@pytest.fixture
def engine_for(db_session):
    return TaskQueryEngine(db_session, max_limit=100)


@pytest.fixture
def create(store, owner, project):
    def _create(title, **fields):
        return store.tasks.create_task(owner, project.id, TaskCreate(title=title, **fields))

    return _create


class TestPagination:
    def test_second_page_of_forty_five(self, engine_for, owner, project, create):
        for i in range(45):
            create(f"Task {i + 1}")

        page = engine_for.query_tasks(owner, project.id, page=2, limit=20)

        assert page.total == 45
        assert page.total_pages == 3
        assert page.page == 2
        assert [item["order_index"] for item in page.items] == list(range(21, 41))

    def test_last_page_is_partial(self, engine_for, owner, project, create):
        for i in range(45):
            create(f"Task {i + 1}")
        page = engine_for.query_tasks(owner, project.id, page=3, limit=20)
        assert len(page.items) == 5

    def test_page_past_the_end_is_empty(self, engine_for, owner, project, create):
        create("Only")
        page = engine_for.query_tasks(owner, project.id, page=5, limit=20)
        assert page.items == []
        assert page.total == 1

    def test_empty_project(self, engine_for, owner, project):
        page = engine_for.query_tasks(owner, project.id)
        assert page.total == 0
        assert page.total_pages == 0

    def test_ordering_is_stable(self, engine_for, owner, project, create):
        for i in range(10):
            create(f"Task {i}")
        first = engine_for.query_tasks(owner, project.id, limit=4)
        second = engine_for.query_tasks(owner, project.id, limit=4)
        assert first.items == second.items

    @pytest.mark.parametrize("page,limit", [(0, 20), (1, 0), (1, 101)])
    def test_rejects_out_of_range(self, engine_for, owner, project, page, limit):
        with pytest.raises(InputValidationError):
            engine_for.query_tasks(owner, project.id, page=page, limit=limit)


class TestFilters:
    def test_status_and_priority_are_anded(self, engine_for, owner, project, create):
        create("a", status=Status.DONE, priority=Priority.HIGH)
        create("b", status=Status.DONE, priority=Priority.LOW)
        create("c", status=Status.TODO, priority=Priority.HIGH)

        page = engine_for.query_tasks(
            owner,
            project.id,
            TaskFilters(status=[Status.DONE], priority=[Priority.HIGH, Priority.URGENT]),
        )
        assert [item["title"] for item in page.items] == ["a"]

    def test_assignee_filter(self, engine_for, owner, add_member, organization, project, create):
        member = add_member(organization.id, Role.MEMBER)
        create("mine", assignee_ids=[member.user_id])
        create("shared", assignee_ids=[member.user_id, owner.user_id])
        create("theirs", assignee_ids=[owner.user_id])

        page = engine_for.query_tasks(owner, project.id, TaskFilters(assignee_ids=[member.user_id]))
        assert [item["title"] for item in page.items] == ["mine", "shared"]

    def test_label_filter(self, store, engine_for, owner, organization, project, create):
        bug = store.organizations.create_label(owner, organization.id, LabelCreate(name="bug"))
        create("broken", label_ids=[bug.id])
        create("fine")

        page = engine_for.query_tasks(owner, project.id, TaskFilters(label_ids=[bug.id]))
        assert [item["title"] for item in page.items] == ["broken"]

    def test_epic_filter(self, store, engine_for, owner, project, create):
        epic = store.projects.create_epic(owner, project.id, EpicCreate(name="Launch"))
        create("in epic", epic_id=epic.id)
        create("loose")

        page = engine_for.query_tasks(owner, project.id, TaskFilters(epic_id=epic.id))
        assert page.total == 1

    def test_search_matches_title_or_description(self, engine_for, owner, project, create):
        create("Fix Login", description=None)
        create("Polish", description="improve the login screen")
        create("Unrelated")

        page = engine_for.query_tasks(owner, project.id, TaskFilters(search="LOGIN"))
        assert [item["title"] for item in page.items] == ["Fix Login", "Polish"]

    def test_search_treats_wildcards_literally(self, engine_for, owner, project, create):
        create("100% done")
        create("1000 items")

        page = engine_for.query_tasks(owner, project.id, TaskFilters(search="100%"))
        assert [item["title"] for item in page.items] == ["100% done"]

    def test_date_range_is_an_or(self, engine_for, owner, project, create):
        create("starts late", start_date=date(2026, 3, 10))
        create("due early", due_date=date(2026, 1, 10))
        create("in the middle", start_date=date(2026, 1, 20), due_date=date(2026, 2, 20))
        create("undated")

        page = engine_for.query_tasks(
            owner,
            project.id,
            TaskFilters(start_date=date(2026, 3, 1), end_date=date(2026, 1, 31)),
        )
        assert [item["title"] for item in page.items] == ["starts late", "due early"]

    def test_single_date_bound(self, engine_for, owner, project, create):
        create("starts late", start_date=date(2026, 3, 10))
        create("due early", due_date=date(2026, 1, 10))

        page = engine_for.query_tasks(owner, project.id, TaskFilters(start_date=date(2026, 3, 1)))
        assert [item["title"] for item in page.items] == ["starts late"]

    def test_total_counts_filtered_rows(self, engine_for, owner, project, create):
        for i in range(30):
            create(f"Task {i}", status=Status.DONE if i % 3 == 0 else Status.TODO)

        page = engine_for.query_tasks(owner, project.id, TaskFilters(status=[Status.DONE]), limit=4)
        assert page.total == 10
        assert page.total_pages == 3
        assert len(page.items) == 4


class TestAccess:
    def test_outsider_is_denied(self, engine_for, make_user, project):
        with pytest.raises(AccessError):
            engine_for.query_tasks(make_user(), project.id)

    def test_missing_project_is_denied(self, engine_for, owner):
        with pytest.raises(AccessError):
            engine_for.query_tasks(owner, "does-not-exist")

    def test_viewer_can_read(self, engine_for, add_member, organization, project, create):
        viewer = add_member(organization.id, Role.VIEWER)
        create("Visible")
        assert engine_for.query_tasks(viewer, project.id).total == 1

    def test_other_projects_are_not_listed(self, store, engine_for, owner, organization, project, create):
        other = store.projects.create_project(owner, organization.id, ProjectCreate(name="API", key="API"))
        store.tasks.create_task(owner, other.id, TaskCreate(title="Elsewhere"))
        create("Here")

        page = engine_for.query_tasks(owner, project.id)
        assert [item["title"] for item in page.items] == ["Here"]


class TestTimeout:
    def test_slow_query_times_out(self, engine_for, owner, project, monkeypatch):
        def slow_query(self, *args, **kwargs):
            time.sleep(0.5)

        monkeypatch.setattr(TaskQueryEngine, "_run_query", slow_query)

        with pytest.raises(QueryTimeoutError):
            engine_for.query_tasks(owner, project.id, timeout=0.05)

    def test_fast_query_within_timeout(self, engine_for, owner, project, create):
        create("Quick")
        page = engine_for.query_tasks(owner, project.id, timeout=5)
        assert page.total == 1
