"""
SQLAlchemy models for Workboard.

Every row belongs, directly or through its parent, to exactly one
Organization. Uniqueness rules that must hold under concurrent writers are
declared here as database constraints so the store can rely on the
persistence layer to reject the losing transaction:

- one membership per (user, organization)
- project key unique per organization
- order_index unique per project
- one open time entry (ended_at IS NULL) per (user, task)
"""

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship, validates

from ..errors import InputValidationError
from ..policy import Role
from ..primitives import ActivityType, Priority, Status, as_utc, generate_id, utc_now
from .base import Base


def _iso(value) -> Any:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = as_utc(value)
    return value.isoformat()


# =============================================================================
# Tenancy
# =============================================================================


class UserModel(Base):
    """A person known to the identity collaborator."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String(320), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    memberships = relationship("MembershipModel", back_populates="user")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "created_at": _iso(self.created_at),
        }


class OrganizationModel(Base):
    """Tenant root. Owns every other row."""

    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(100), nullable=False)
    slug = Column(String(50), nullable=False, unique=True, index=True)
    logo = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    memberships = relationship(
        "MembershipModel", back_populates="organization", cascade="all, delete-orphan"
    )
    projects = relationship("ProjectModel", back_populates="organization")
    labels = relationship("LabelModel", back_populates="organization")

    @validates("slug")
    def _slug_is_immutable(self, key: str, value: str) -> str:
        if self.slug is not None and value != self.slug:
            raise InputValidationError("Organization slug cannot be changed")
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "logo": self.logo,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class MembershipModel(Base):
    """A user's role inside one organization."""

    __tablename__ = "memberships"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    role = Column(Enum(Role, name="membership_role"), nullable=False, default=Role.MEMBER)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    user = relationship("UserModel", back_populates="memberships")
    organization = relationship("OrganizationModel", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_memberships_user_org"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "role": self.role.value,
            "created_at": _iso(self.created_at),
        }


class InviteModel(Base):
    """A pending offer of membership addressed to an email."""

    __tablename__ = "invites"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    email = Column(String(320), nullable=False, index=True)
    role = Column(Enum(Role, name="membership_role"), nullable=False, default=Role.MEMBER)
    token = Column(String(128), nullable=False, unique=True)
    accepted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        # The token is a bearer secret; it is only handed out at creation.
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "email": self.email,
            "role": self.role.value,
            "accepted": self.accepted,
            "created_at": _iso(self.created_at),
        }


class LabelModel(Base):
    """Organization-wide task label."""

    __tablename__ = "labels"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    name = Column(String(50), nullable=False)
    color = Column(String(7), nullable=False, default="#6366f1")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    organization = relationship("OrganizationModel", back_populates="labels")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "color": self.color,
        }


# =============================================================================
# Work items
# =============================================================================


class ProjectModel(Base):
    """A board of tasks inside an organization."""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    name = Column(String(100), nullable=False)
    key = Column(String(10), nullable=False)
    description = Column(Text, nullable=True)
    lead_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    status = Column(Enum(Status, name="work_status"), nullable=False, default=Status.TODO)
    priority = Column(
        Enum(Priority, name="work_priority"), nullable=False, default=Priority.MEDIUM
    )
    budget_cents = Column(Integer, nullable=False, default=0)
    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)

    # Last order_index handed out; only ever incremented
    task_sequence = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    organization = relationship("OrganizationModel", back_populates="projects")
    epics = relationship("EpicModel", back_populates="project")
    tasks = relationship("TaskModel", back_populates="project")

    __table_args__ = (
        UniqueConstraint("organization_id", "key", name="uq_projects_org_key"),
        CheckConstraint("budget_cents >= 0", name="ck_projects_budget_non_negative"),
        CheckConstraint(
            "due_date IS NULL OR start_date IS NULL OR due_date >= start_date",
            name="ck_projects_date_order",
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "key": self.key,
            "description": self.description,
            "lead_id": self.lead_id,
            "status": self.status.value,
            "priority": self.priority.value,
            "budget_cents": self.budget_cents,
            "start_date": _iso(self.start_date),
            "due_date": _iso(self.due_date),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class EpicModel(Base):
    """Grouping of tasks inside a project."""

    __tablename__ = "epics"

    id = Column(String(36), primary_key=True, default=generate_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    project = relationship("ProjectModel", back_populates="epics")

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "project_id": self.project_id, "name": self.name}


class TaskModel(Base):
    """A unit of work. Optionally a subtask of another task in the same project."""

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=generate_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
    epic_id = Column(String(36), ForeignKey("epics.id"), nullable=True, index=True)
    parent_task_id = Column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True
    )
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(Enum(Status, name="work_status"), nullable=False, default=Status.TODO)
    priority = Column(
        Enum(Priority, name="work_priority"), nullable=False, default=Priority.MEDIUM
    )
    points = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    order_index = Column(Integer, nullable=False)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    project = relationship("ProjectModel", back_populates="tasks")
    epic = relationship("EpicModel")
    parent_task = relationship("TaskModel", remote_side=[id], back_populates="subtasks")
    subtasks = relationship(
        "TaskModel", back_populates="parent_task", cascade="all, delete-orphan"
    )
    assignees = relationship(
        "TaskAssigneeModel", back_populates="task", cascade="all, delete-orphan"
    )
    labels = relationship(
        "TaskLabelModel", back_populates="task", cascade="all, delete-orphan"
    )
    comments = relationship(
        "CommentModel", back_populates="task", cascade="all, delete-orphan"
    )
    time_entries = relationship(
        "TimeEntryModel", back_populates="task", cascade="all, delete-orphan"
    )
    files = relationship("FileModel", back_populates="task", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("project_id", "order_index", name="uq_tasks_project_order"),
        CheckConstraint(
            "points IS NULL OR (points >= 0 AND points <= 100)",
            name="ck_tasks_points_range",
        ),
        CheckConstraint(
            "due_date IS NULL OR start_date IS NULL OR due_date >= start_date",
            name="ck_tasks_date_order",
        ),
        Index("ix_tasks_project_status", "project_id", "status"),
    )

    @property
    def assignee_ids(self) -> List[str]:
        return sorted(a.user_id for a in self.assignees)

    @property
    def label_ids(self) -> List[str]:
        return sorted(tl.label_id for tl in self.labels)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "epic_id": self.epic_id,
            "parent_task_id": self.parent_task_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "points": self.points,
            "start_date": _iso(self.start_date),
            "due_date": _iso(self.due_date),
            "order_index": self.order_index,
            "created_by_id": self.created_by_id,
            "assignee_ids": self.assignee_ids,
            "label_ids": self.label_ids,
            "subtask_count": len(self.subtasks),
            "comment_count": len(self.comments),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class TaskAssigneeModel(Base):
    __tablename__ = "task_assignees"

    id = Column(String(36), primary_key=True, default=generate_id)
    task_id = Column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    task = relationship("TaskModel", back_populates="assignees")

    __table_args__ = (
        UniqueConstraint("task_id", "user_id", name="uq_task_assignees_task_user"),
    )


class TaskLabelModel(Base):
    __tablename__ = "task_labels"

    id = Column(String(36), primary_key=True, default=generate_id)
    task_id = Column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label_id = Column(String(36), ForeignKey("labels.id"), nullable=False, index=True)

    task = relationship("TaskModel", back_populates="labels")
    label = relationship("LabelModel")

    __table_args__ = (
        UniqueConstraint("task_id", "label_id", name="uq_task_labels_task_label"),
    )


class CommentModel(Base):
    """Discussion entry on a task. Author and task never change."""

    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=generate_id)
    task_id = Column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    task = relationship("TaskModel", back_populates="comments")

    @validates("task_id", "author_id")
    def _ownership_is_immutable(self, key: str, value: str) -> str:
        current = getattr(self, key)
        if current is not None and value != current:
            raise InputValidationError(f"Comment {key} cannot be changed")
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "author_id": self.author_id,
            "body": self.body,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class TimeEntryModel(Base):
    """Logged or running work interval. ended_at IS NULL means the timer is open."""

    __tablename__ = "time_entries"

    id = Column(String(36), primary_key=True, default=generate_id)
    task_id = Column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    seconds = Column(Integer, nullable=False, default=0)
    billable = Column(Boolean, nullable=False, default=False)
    rate_cents = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    task = relationship("TaskModel", back_populates="time_entries")

    __table_args__ = (
        CheckConstraint("seconds >= 0", name="ck_time_entries_seconds_non_negative"),
        CheckConstraint("rate_cents >= 0", name="ck_time_entries_rate_non_negative"),
        CheckConstraint(
            "ended_at IS NULL OR ended_at >= started_at",
            name="ck_time_entries_interval_order",
        ),
        Index(
            "uq_time_entries_open_per_user_task",
            "user_id",
            "task_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL"),
            postgresql_where=text("ended_at IS NULL"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "seconds": self.seconds,
            "billable": self.billable,
            "rate_cents": self.rate_cents,
        }


class FileModel(Base):
    """Attachment metadata. The bytes live with the storage collaborator."""

    __tablename__ = "files"

    id = Column(String(36), primary_key=True, default=generate_id)
    task_id = Column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True
    )
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    url = Column(String(1000), nullable=False)
    size = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    task = relationship("TaskModel", back_populates="files")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "project_id": self.project_id,
            "name": self.name,
            "url": self.url,
            "size": self.size,
            "created_at": _iso(self.created_at),
        }


# =============================================================================
# Side-effect rows
# =============================================================================


class ActivityModel(Base):
    """
    Append-only record of a mutation.

    project_id and task_id are plain references rather than foreign keys so
    the history of a deleted task stays readable.
    """

    __tablename__ = "activities"

    id = Column(String(36), primary_key=True, default=generate_id)
    type = Column(Enum(ActivityType, name="activity_type"), nullable=False, index=True)
    meta = Column(JSON, nullable=False, default=dict)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    project_id = Column(String(36), nullable=True, index=True)
    task_id = Column(String(36), nullable=True, index=True)
    actor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    # Lets the unit of work insert a new organization before its first activity
    organization = relationship("OrganizationModel")
    actor = relationship("UserModel")

    __table_args__ = (Index("ix_activities_org_created", "organization_id", "created_at"),)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "meta": self.meta,
            "organization_id": self.organization_id,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "actor_id": self.actor_id,
            "created_at": _iso(self.created_at),
        }


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False, default="")
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "body": self.body,
            "read": self.read,
            "created_at": _iso(self.created_at),
        }
