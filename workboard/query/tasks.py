"""
Task query engine.

Tenant-scoped, filtered and paginated task listing. Results are ordered by
order_index, so repeated calls over unchanged data return the same pages.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from ..config import get_settings
from ..db.models import MembershipModel, ProjectModel, TaskAssigneeModel, TaskLabelModel, TaskModel
from ..errors import AccessError, InputValidationError, QueryTimeoutError
from ..identity import Caller, ensure_authenticated
from ..policy import Action, authorize
from ..schemas import TaskFilters, TaskPage

logger = structlog.get_logger()


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def apply_filters(stmt, filters: TaskFilters):
    """AND the given filters onto a task select."""
    if filters.status:
        stmt = stmt.where(TaskModel.status.in_(filters.status))
    if filters.priority:
        stmt = stmt.where(TaskModel.priority.in_(filters.priority))
    if filters.assignee_ids:
        stmt = stmt.where(
            TaskModel.assignees.any(TaskAssigneeModel.user_id.in_(filters.assignee_ids))
        )
    if filters.label_ids:
        stmt = stmt.where(TaskModel.labels.any(TaskLabelModel.label_id.in_(filters.label_ids)))
    if filters.epic_id:
        stmt = stmt.where(TaskModel.epic_id == filters.epic_id)

    if filters.search and filters.search.strip():
        pattern = _like_pattern(filters.search.strip())
        stmt = stmt.where(
            or_(
                TaskModel.title.ilike(pattern, escape="\\"),
                TaskModel.description.ilike(pattern, escape="\\"),
            )
        )

    # Both bounds widen rather than narrow: starts after the range start OR
    # is due before the range end.
    if filters.start_date and filters.end_date:
        stmt = stmt.where(
            or_(
                TaskModel.start_date >= filters.start_date,
                TaskModel.due_date <= filters.end_date,
            )
        )
    elif filters.start_date:
        stmt = stmt.where(TaskModel.start_date >= filters.start_date)
    elif filters.end_date:
        stmt = stmt.where(TaskModel.due_date <= filters.end_date)

    return stmt


class TaskQueryEngine:
    """Read side for task listings."""

    def __init__(self, db: Session, max_limit: Optional[int] = None):
        self.db = db
        self.max_limit = max_limit or get_settings().max_page_limit

    def query_tasks(
        self,
        caller: Caller,
        project_id: str,
        filters: Optional[TaskFilters] = None,
        page: int = 1,
        limit: int = 20,
        timeout: Optional[float] = None,
    ) -> TaskPage:
        """List a project's tasks.

        Args:
            caller: Authenticated caller; must belong to the project's organization
            project_id: Project to list
            filters: Optional filters, combined with AND
            page: 1-based page number
            limit: Page size, 1 to max_limit
            timeout: Seconds to wait before giving up with QueryTimeoutError

        Returns:
            TaskPage with the page items and the pre-pagination total
        """
        ensure_authenticated(caller)
        if page < 1:
            raise InputValidationError("page must be at least 1")
        if limit < 1 or limit > self.max_limit:
            raise InputValidationError(f"limit must be between 1 and {self.max_limit}")
        filters = filters or TaskFilters()

        if timeout is None:
            return self._run_query(self.db, caller, project_id, filters, page, limit)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="workboard-query")
        future = executor.submit(
            self._run_in_own_session, caller, project_id, filters, page, limit
        )
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning("query_timeout", project_id=project_id, timeout=timeout)
            raise QueryTimeoutError(f"Task query exceeded {timeout} seconds") from None
        finally:
            executor.shutdown(wait=False)

    def _run_in_own_session(
        self, caller: Caller, project_id: str, filters: TaskFilters, page: int, limit: int
    ) -> TaskPage:
        factory = sessionmaker(bind=self.db.get_bind(), autoflush=False, expire_on_commit=False)
        with factory() as db:
            return self._run_query(db, caller, project_id, filters, page, limit)

    def _run_query(
        self,
        db: Session,
        caller: Caller,
        project_id: str,
        filters: TaskFilters,
        page: int,
        limit: int,
    ) -> TaskPage:
        project = db.get(ProjectModel, project_id)
        membership = None
        if project is not None:
            membership = db.scalar(
                select(MembershipModel).where(
                    MembershipModel.organization_id == project.organization_id,
                    MembershipModel.user_id == caller.user_id,
                )
            )
        # A missing project and a foreign one look the same to the caller
        if membership is None or not authorize(membership.role, Action.VIEW_TASK):
            raise AccessError("You do not have access to this project")

        stmt = apply_filters(select(TaskModel).where(TaskModel.project_id == project.id), filters)

        total = db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = db.scalars(
            stmt.options(
                selectinload(TaskModel.assignees),
                selectinload(TaskModel.labels),
                selectinload(TaskModel.subtasks),
                selectinload(TaskModel.comments),
            )
            .order_by(TaskModel.order_index, TaskModel.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        ).all()

        return TaskPage(
            items=[task.to_dict() for task in rows],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )
