"""
Access control for Workboard.

Exports the permission table and the pure ``authorize`` check used by every
mutation and query.
"""

from .access import (
    PERMISSIONS,
    ROLE_RANK,
    Action,
    Role,
    authorize,
    can_grant_role,
    require,
)

__all__ = [
    "Action",
    "PERMISSIONS",
    "ROLE_RANK",
    "Role",
    "authorize",
    "can_grant_role",
    "require",
]
