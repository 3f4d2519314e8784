"""
Database package for Workboard.
"""

from .base import (
    Base,
    build_engine,
    drop_database,
    get_db,
    get_engine,
    get_session_factory,
    init_database,
)
from .models import (
    ActivityModel,
    CommentModel,
    EpicModel,
    FileModel,
    InviteModel,
    LabelModel,
    MembershipModel,
    NotificationModel,
    OrganizationModel,
    ProjectModel,
    TaskAssigneeModel,
    TaskLabelModel,
    TaskModel,
    TimeEntryModel,
    UserModel,
)

__all__ = [
    "Base",
    "build_engine",
    "drop_database",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_database",
    "ActivityModel",
    "CommentModel",
    "EpicModel",
    "FileModel",
    "InviteModel",
    "LabelModel",
    "MembershipModel",
    "NotificationModel",
    "OrganizationModel",
    "ProjectModel",
    "TaskAssigneeModel",
    "TaskLabelModel",
    "TaskModel",
    "TimeEntryModel",
    "UserModel",
]
