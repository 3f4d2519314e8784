"""
Shared plumbing for the work-item services.

Every mutation follows the same shape:

    role = self._require(caller, organization_id, Action.X)
    ... validate ...
    with self.transaction():
        ... write rows, self.activity.record(...) ...
    self._publish([...], caller)

The transaction commits the mutation and its Activity row together, turns a
constraint violation into ConflictError and rolls back on any failure.
Events are published only after a successful commit.
"""

from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.activity_service import ActivityService, NotificationService
from ..db.models import (
    CommentModel,
    MembershipModel,
    OrganizationModel,
    ProjectModel,
    TaskModel,
)
from ..errors import AccessError, ConflictError, InputValidationError, NotFoundError
from ..identity import Caller, ensure_authenticated
from ..policy import Action, Role, require
from ..realtime import EventPublisher, NullPublisher, publish_all
from ..realtime.publisher import PendingEvent

logger = structlog.get_logger()


class StoreService:
    """Base class for services that mutate the work-item graph."""

    def __init__(
        self,
        db: Session,
        publisher: Optional[EventPublisher] = None,
        activity: Optional[ActivityService] = None,
    ):
        self.db = db
        self.publisher = publisher or NullPublisher()
        self.activity = activity or ActivityService(db)
        self.notifications = NotificationService(db)

    # -------------------------------------------------------------------------
    # Transactions and publishing
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit everything staged inside the block as one unit."""
        try:
            yield
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.info("store_conflict", error=str(e.orig))
            raise ConflictError(
                "The change conflicts with existing data or a concurrent update"
            ) from e
        except Exception:
            self.db.rollback()
            raise

    def _publish(self, events: Iterable[PendingEvent], caller: Caller) -> None:
        publish_all(self.publisher, events, actor_id=caller.user_id)

    # -------------------------------------------------------------------------
    # Membership and permission
    # -------------------------------------------------------------------------

    def _membership(self, organization_id: str, user_id: str) -> Optional[MembershipModel]:
        return (
            self.db.query(MembershipModel)
            .filter(
                MembershipModel.organization_id == organization_id,
                MembershipModel.user_id == user_id,
            )
            .first()
        )

    def _member_role(self, caller: Caller, organization_id: str) -> Optional[Role]:
        ensure_authenticated(caller)
        membership = self._membership(organization_id, caller.user_id)
        return membership.role if membership else None

    def _require_member(self, caller: Caller, organization_id: str) -> Role:
        role = self._member_role(caller, organization_id)
        if role is None:
            raise AccessError("You are not a member of this organization")
        return role

    def _require(self, caller: Caller, organization_id: str, action: Action) -> Role:
        role = self._require_member(caller, organization_id)
        require(role, action)
        return role

    def _is_member(self, organization_id: str, user_id: str) -> bool:
        return self._membership(organization_id, user_id) is not None

    # -------------------------------------------------------------------------
    # Tenant-scoped loading
    #
    # An entity in an organization the caller does not belong to is reported
    # exactly like a missing one.
    # -------------------------------------------------------------------------

    def _load_organization(self, caller: Caller, organization_id: str):
        role = self._member_role(caller, organization_id)
        organization = self.db.get(OrganizationModel, organization_id)
        if organization is None or role is None:
            raise NotFoundError("Organization", organization_id)
        return organization, role

    def _load_project(self, caller: Caller, project_id: str):
        ensure_authenticated(caller)
        project = self.db.get(ProjectModel, project_id)
        role = self._member_role(caller, project.organization_id) if project else None
        if project is None or role is None:
            raise NotFoundError("Project", project_id)
        return project, role

    def _load_task(self, caller: Caller, task_id: str):
        ensure_authenticated(caller)
        task = self.db.get(TaskModel, task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        role = self._member_role(caller, task.project.organization_id)
        if role is None:
            raise NotFoundError("Task", task_id)
        return task, role

    def _load_comment(self, caller: Caller, comment_id: str):
        ensure_authenticated(caller)
        comment = self.db.get(CommentModel, comment_id)
        if comment is None:
            raise NotFoundError("Comment", comment_id)
        role = self._member_role(caller, comment.task.project.organization_id)
        if role is None:
            raise NotFoundError("Comment", comment_id)
        return comment, role

    # -------------------------------------------------------------------------
    # Row locks
    # -------------------------------------------------------------------------

    def _bump_task_sequence(self, project_id: str, step: int = 1) -> int:
        """
        Advance the project's task counter and return the new value.

        The UPDATE takes the project row lock (the database write lock on
        SQLite), so concurrent writers on one project are serialized until
        commit. ``step=0`` only takes the lock. Must be the first write of
        the transaction.
        """
        self.db.execute(
            update(ProjectModel)
            .where(ProjectModel.id == project_id)
            .values(
                task_sequence=ProjectModel.task_sequence + step,
                updated_at=ProjectModel.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        return self.db.scalar(
            select(ProjectModel.task_sequence).where(ProjectModel.id == project_id)
        )

    def _lock_organization(self, organization_id: str) -> None:
        """Take the organization row lock for membership changes."""
        self.db.execute(
            update(OrganizationModel)
            .where(OrganizationModel.id == organization_id)
            .values(updated_at=OrganizationModel.updated_at)
            .execution_options(synchronize_session=False)
        )


def check_date_order(start: Optional[date], due: Optional[date]) -> None:
    if start is not None and due is not None and due < start:
        raise InputValidationError("due_date must not be before start_date")


def jsonable(value: Any) -> Any:
    """Render enum and date values the way they are stored in Activity meta."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


def change_set(before: Any, after: Any) -> Dict[str, Any]:
    return {"from": jsonable(before), "to": jsonable(after)}


def unique_ids(ids: Optional[Iterable[str]]) -> list:
    """Drop duplicate ids while keeping their first-seen order."""
    seen = set()
    result = []
    for item in ids or ():
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
