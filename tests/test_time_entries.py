"""Tests for time entries, comments, files and the notification inbox."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from workboard.db.models import ActivityModel, NotificationModel
from workboard.errors import AccessError, ConflictError, InputValidationError, NotFoundError
from workboard.policy import Role
from workboard.primitives import ActivityType
from workboard.realtime import EventType
from workboard.schemas import CommentCreate, FileAttach, TaskCreate, TaskUpdate, TimeEntryCreate

START = datetime(2026, 2, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def task(store, owner, project):
    return store.tasks.create_task(owner, project.id, TaskCreate(title="Track me"))


class TestRecordTimeEntry:
    def test_closed_entry_computes_seconds(self, store, owner, task):
        entry = store.time_entries.record_time_entry(
            owner, task.id, TimeEntryCreate(started_at=START, ended_at=START + timedelta(minutes=90))
        )
        assert entry.seconds == 5400
        assert entry.is_open is False

    def test_matching_seconds_are_accepted(self, store, owner, task):
        entry = store.time_entries.record_time_entry(
            owner,
            task.id,
            TimeEntryCreate(started_at=START, ended_at=START + timedelta(hours=1), seconds=3600),
        )
        assert entry.seconds == 3600

    def test_mismatched_seconds_are_rejected(self, store, owner, task):
        with pytest.raises(InputValidationError):
            store.time_entries.record_time_entry(
                owner,
                task.id,
                TimeEntryCreate(started_at=START, ended_at=START + timedelta(hours=1), seconds=60),
            )

    def test_end_before_start(self, store, owner, task):
        with pytest.raises(InputValidationError):
            store.time_entries.record_time_entry(
                owner, task.id, TimeEntryCreate(started_at=START, ended_at=START - timedelta(minutes=1))
            )

    def test_open_entry_cannot_carry_seconds(self, store, owner, task):
        with pytest.raises(InputValidationError):
            store.time_entries.record_time_entry(
                owner, task.id, TimeEntryCreate(started_at=START, seconds=30)
            )

    def test_negative_rate_is_invalid(self):
        with pytest.raises(ValidationError):
            TimeEntryCreate(started_at=START, rate_cents=-1)

    def test_viewer_cannot_log_time(self, store, add_member, organization, task):
        viewer = add_member(organization.id, Role.VIEWER)
        with pytest.raises(AccessError):
            store.time_entries.record_time_entry(
                viewer, task.id, TimeEntryCreate(started_at=START, ended_at=START)
            )

    def test_logged_entry_activity_and_event(self, store, db_session, publisher, owner, task):
        publisher.clear()
        store.time_entries.record_time_entry(
            owner, task.id, TimeEntryCreate(started_at=START, ended_at=START + timedelta(minutes=5))
        )
        activity = (
            db_session.query(ActivityModel)
            .filter(ActivityModel.type == ActivityType.TIME_ENTRY_LOGGED)
            .one()
        )
        assert activity.meta["seconds"] == 300
        assert [e.type for e in publisher.events] == [EventType.TIME_ENTRY_STOPPED]


class TestTimers:
    def test_start_then_stop(self, store, publisher, owner, task):
        publisher.clear()
        running = store.time_entries.start_timer(owner, task.id, billable=True, rate_cents=6000)
        assert running.is_open

        ended = datetime.now(timezone.utc) + timedelta(minutes=10)
        stopped = store.time_entries.stop_timer(owner, task.id, ended_at=ended)

        assert stopped.id == running.id
        assert stopped.ended_at is not None
        assert 590 <= stopped.seconds <= 610
        assert [e.type for e in publisher.events] == [
            EventType.TIME_ENTRY_STARTED,
            EventType.TIME_ENTRY_STOPPED,
        ]

    def test_one_open_timer_per_user_and_task(self, store, owner, task):
        store.time_entries.start_timer(owner, task.id)
        with pytest.raises(ConflictError):
            store.time_entries.start_timer(owner, task.id)

    def test_other_users_may_run_their_own_timer(self, store, owner, add_member, organization, task):
        member = add_member(organization.id, Role.MEMBER)
        store.time_entries.start_timer(owner, task.id)
        store.time_entries.start_timer(member, task.id)

    def test_stop_without_running_timer(self, store, owner, task):
        with pytest.raises(NotFoundError):
            store.time_entries.stop_timer(owner, task.id)

    def test_timer_can_restart_after_stop(self, store, owner, task):
        store.time_entries.start_timer(owner, task.id)
        store.time_entries.stop_timer(owner, task.id)
        store.time_entries.start_timer(owner, task.id)
        assert len(store.time_entries.list_time_entries(owner, task.id)) == 2


class TestComments:
    def test_member_comments(self, store, publisher, add_member, organization, task):
        member = add_member(organization.id, Role.VIEWER)
        comment = store.comments.add_comment(member, task.id, CommentCreate(body="Looks good"))

        assert [c.id for c in store.comments.list_comments(member, task.id)] == [comment.id]
        assert publisher.of_type(EventType.COMMENT_CREATED)[0].channel == f"task:{task.id}"

    def test_only_author_edits(self, store, owner, add_member, organization, task):
        member = add_member(organization.id, Role.MEMBER)
        comment = store.comments.add_comment(member, task.id, CommentCreate(body="Draft"))

        with pytest.raises(AccessError):
            store.comments.update_comment(owner, comment.id, CommentCreate(body="Edited"))

        edited = store.comments.update_comment(member, comment.id, CommentCreate(body="Final"))
        assert edited.body == "Final"

    def test_manager_may_delete_others_comment(self, store, add_member, organization, task):
        member = add_member(organization.id, Role.MEMBER)
        manager = add_member(organization.id, Role.MANAGER)
        comment = store.comments.add_comment(member, task.id, CommentCreate(body="Spam"))

        store.comments.delete_comment(manager, comment.id)
        assert store.comments.list_comments(manager, task.id) == []

    def test_member_cannot_delete_others_comment(self, store, add_member, organization, task):
        author = add_member(organization.id, Role.MEMBER)
        other = add_member(organization.id, Role.MEMBER)
        comment = store.comments.add_comment(author, task.id, CommentCreate(body="Mine"))
        with pytest.raises(AccessError):
            store.comments.delete_comment(other, comment.id)

    def test_outsider_cannot_see_comment(self, store, owner, make_user, task):
        comment = store.comments.add_comment(owner, task.id, CommentCreate(body="Private"))
        with pytest.raises(NotFoundError):
            store.comments.delete_comment(make_user(), comment.id)

    def test_comment_length_limit(self):
        with pytest.raises(ValidationError):
            CommentCreate(body="x" * 1001)


class TestFiles:
    def test_attach_and_list(self, store, owner, task):
        attachment = store.files.attach_file(
            owner, task.id, FileAttach(name="mock.png", url="https://cdn.example.com/mock.png", size=2048)
        )
        files = store.files.list_files(owner, task.id)
        assert [f.id for f in files] == [attachment.id]
        assert files[0].project_id == task.project_id

    def test_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            FileAttach(name="empty", url="https://cdn.example.com/empty", size=0)


class TestInbox:
    def test_mark_read(self, store, owner, add_member, organization, task):
        member = add_member(organization.id, Role.MEMBER)
        store.tasks.update_task(owner, task.id, TaskUpdate(assignee_ids=[member.user_id]))

        [notification] = store.inbox.list_notifications(member, unread_only=True)
        store.inbox.mark_notification_read(member, notification.id)

        assert store.inbox.list_notifications(member, unread_only=True) == []
        assert len(store.inbox.list_notifications(member)) == 1

    def test_cannot_read_someone_elses_notification(
        self, store, db_session, owner, add_member, organization, task
    ):
        member = add_member(organization.id, Role.MEMBER)
        store.tasks.update_task(owner, task.id, TaskUpdate(assignee_ids=[member.user_id]))
        notification = (
            db_session.query(NotificationModel)
            .filter(NotificationModel.user_id == member.user_id)
            .one()
        )
        with pytest.raises(NotFoundError):
            store.inbox.mark_notification_read(owner, notification.id)
