"""
Input and output schemas for Workboard operations.

Field-level shape (lengths, ranges, formats) is enforced here. Rules that
depend on stored state, such as date order after a partial update, parent
placement or key uniqueness, are enforced by the store inside the mutation
transaction.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, conint, constr, model_validator

from ..policy import Role
from ..primitives import Priority, Status


# =============================================================================
# Organizations
# =============================================================================


class OrganizationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: constr(strip_whitespace=True, min_length=1, max_length=100)
    slug: constr(min_length=1, max_length=50, pattern=r"^[a-z0-9-]+$")


class OrganizationUpdate(BaseModel):
    """Name and logo only; the slug is fixed at creation."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=100)] = None
    logo: Optional[constr(max_length=500)] = None


class InviteCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    role: Role = Role.MEMBER


class LabelCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: constr(strip_whitespace=True, min_length=1, max_length=50)
    color: constr(pattern=r"^#[0-9a-fA-F]{6}$") = "#6366f1"


# =============================================================================
# Projects
# =============================================================================


class ProjectCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: constr(strip_whitespace=True, min_length=1, max_length=100)
    key: constr(min_length=1, max_length=10, pattern=r"^[A-Z]+$")
    description: Optional[constr(max_length=500)] = None
    lead_id: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    status: Status = Status.TODO
    priority: Priority = Priority.MEDIUM
    budget_cents: conint(ge=0) = 0


class ProjectUpdate(BaseModel):
    """Partial update: only fields present in the payload change."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=100)] = None
    key: Optional[constr(min_length=1, max_length=10, pattern=r"^[A-Z]+$")] = None
    description: Optional[constr(max_length=500)] = None
    lead_id: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    status: Optional[Status] = None
    priority: Optional[Priority] = None
    budget_cents: Optional[conint(ge=0)] = None

    @model_validator(mode="after")
    def _required_fields_not_cleared(self) -> "ProjectUpdate":
        for name in ("name", "key", "status", "priority", "budget_cents"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"'{name}' cannot be cleared")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class EpicCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: constr(strip_whitespace=True, min_length=1, max_length=100)


# =============================================================================
# Tasks
# =============================================================================


class TaskCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: constr(strip_whitespace=True, min_length=1, max_length=200)
    description: Optional[constr(max_length=1000)] = None
    status: Status = Status.TODO
    priority: Priority = Priority.MEDIUM
    points: Optional[conint(ge=0, le=100)] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    epic_id: Optional[str] = None
    parent_task_id: Optional[str] = None
    assignee_ids: List[str] = Field(default_factory=list)
    label_ids: List[str] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    """
    Partial update: only fields present in the payload change.

    Sending ``null`` for an optional field clears it; ``assignee_ids`` and
    ``label_ids`` replace the whole set when present.
    """

    model_config = ConfigDict(extra="forbid")

    title: Optional[constr(strip_whitespace=True, min_length=1, max_length=200)] = None
    description: Optional[constr(max_length=1000)] = None
    status: Optional[Status] = None
    priority: Optional[Priority] = None
    points: Optional[conint(ge=0, le=100)] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    epic_id: Optional[str] = None
    parent_task_id: Optional[str] = None
    assignee_ids: Optional[List[str]] = None
    label_ids: Optional[List[str]] = None
    order_index: Optional[conint(ge=0)] = None

    @model_validator(mode="after")
    def _required_fields_not_cleared(self) -> "TaskUpdate":
        for name in ("title", "status", "priority", "order_index"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"'{name}' cannot be cleared")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class CommentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    body: constr(strip_whitespace=True, min_length=1, max_length=1000)


class TimeEntryCreate(BaseModel):
    """
    A closed interval (ended_at set, seconds matching it) or an open timer
    (ended_at omitted).
    """

    model_config = ConfigDict(extra="forbid")

    started_at: datetime
    ended_at: Optional[datetime] = None
    seconds: conint(ge=0) = 0
    billable: bool = False
    rate_cents: conint(ge=0) = 0


class FileAttach(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: constr(min_length=1, max_length=255)
    url: constr(min_length=1, max_length=1000)
    size: conint(ge=1)


# =============================================================================
# Queries
# =============================================================================


class TaskFilters(BaseModel):
    """
    Independent, optional task filters combined with AND.

    Two groups are ORs internally: ``search`` matches title OR description,
    and a date range with both bounds matches start_date >= start_date bound
    OR due_date <= end_date bound.
    """

    model_config = ConfigDict(extra="forbid")

    status: Optional[List[Status]] = None
    priority: Optional[List[Priority]] = None
    assignee_ids: Optional[List[str]] = None
    label_ids: Optional[List[str]] = None
    epic_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: Optional[str] = None


class TaskPage(BaseModel):
    items: List[Dict[str, Any]]
    total: int
    page: int
    limit: int
    total_pages: int


class DashboardMetrics(BaseModel):
    total_projects: int
    tasks_by_status: Dict[str, int]
    overdue_tasks: int
    time_logged_seconds: int
    billable_total_cents: int
    budget_burn_cents: int
    planned_budget_cents: int
    active_users: int
    recent_activity: List[Dict[str, Any]]


# =============================================================================
# Request boundary
# =============================================================================


class UserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=200)] = None


class InviteAccept(BaseModel):
    token: constr(min_length=1, max_length=128)


class RoleChange(BaseModel):
    role: Role


class TimerStart(BaseModel):
    model_config = ConfigDict(extra="forbid")

    billable: bool = False
    rate_cents: conint(ge=0) = 0


class TimerStop(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ended_at: Optional[datetime] = None
