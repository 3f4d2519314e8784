"""Pydantic schemas for Workboard inputs and query results."""

from .work_items import (
    CommentCreate,
    DashboardMetrics,
    EpicCreate,
    FileAttach,
    InviteAccept,
    InviteCreate,
    LabelCreate,
    OrganizationCreate,
    OrganizationUpdate,
    ProjectCreate,
    ProjectUpdate,
    RoleChange,
    TaskCreate,
    TaskFilters,
    TaskPage,
    TaskUpdate,
    TimeEntryCreate,
    TimerStart,
    TimerStop,
    UserCreate,
)

__all__ = [
    "CommentCreate",
    "DashboardMetrics",
    "EpicCreate",
    "FileAttach",
    "InviteAccept",
    "InviteCreate",
    "LabelCreate",
    "OrganizationCreate",
    "OrganizationUpdate",
    "ProjectCreate",
    "ProjectUpdate",
    "RoleChange",
    "TaskCreate",
    "TaskFilters",
    "TaskPage",
    "TaskUpdate",
    "TimeEntryCreate",
    "TimerStart",
    "TimerStop",
    "UserCreate",
]
