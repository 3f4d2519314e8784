"""
Access control engine for Workboard.

A pure, stateless permission table mapping (role, action) to allow/deny.
Nothing here performs I/O; every store and query operation calls
``authorize`` (or ``require``) before touching data and treats a deny as an
AccessError.

Truth table:
- view_task: every role, including VIEWER
- create_task, move_task: every role except VIEWER
- delete_task, edit_project: MANAGER and above
- invite_user, manage_roles, manage_org: ADMIN and above

Unknown roles and unknown actions always deny.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Union

from ..errors import AccessError


class Role(str, Enum):
    """Membership roles, least to most privileged."""

    VIEWER = "VIEWER"
    MEMBER = "MEMBER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    OWNER = "OWNER"


class Action(str, Enum):
    """Actions gated by the permission table."""

    VIEW_TASK = "view_task"
    CREATE_TASK = "create_task"
    MOVE_TASK = "move_task"
    DELETE_TASK = "delete_task"
    EDIT_PROJECT = "edit_project"
    MANAGE_ORG = "manage_org"
    INVITE_USER = "invite_user"
    MANAGE_ROLES = "manage_roles"


ROLE_RANK: Dict[Role, int] = {
    Role.VIEWER: 1,
    Role.MEMBER: 2,
    Role.MANAGER: 3,
    Role.ADMIN: 4,
    Role.OWNER: 5,
}

_ALL = frozenset(Role)
_CONTRIBUTORS = frozenset({Role.MEMBER, Role.MANAGER, Role.ADMIN, Role.OWNER})
_MANAGERS = frozenset({Role.MANAGER, Role.ADMIN, Role.OWNER})
_ADMINS = frozenset({Role.ADMIN, Role.OWNER})

PERMISSIONS: Dict[Action, FrozenSet[Role]] = {
    Action.VIEW_TASK: _ALL,
    Action.CREATE_TASK: _CONTRIBUTORS,
    Action.MOVE_TASK: _CONTRIBUTORS,
    Action.DELETE_TASK: _MANAGERS,
    Action.EDIT_PROJECT: _MANAGERS,
    Action.INVITE_USER: _ADMINS,
    Action.MANAGE_ROLES: _ADMINS,
    Action.MANAGE_ORG: _ADMINS,
}


def _coerce_role(role: Union[Role, str, None]) -> Role | None:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def _coerce_action(action: Union[Action, str, None]) -> Action | None:
    if isinstance(action, Action):
        return action
    try:
        return Action(action)
    except ValueError:
        return None


def authorize(role: Union[Role, str, None], action: Union[Action, str, None]) -> bool:
    """Return True when ``role`` may perform ``action``."""
    resolved_role = _coerce_role(role)
    resolved_action = _coerce_action(action)
    if resolved_role is None or resolved_action is None:
        return False
    return resolved_role in PERMISSIONS.get(resolved_action, frozenset())


def require(role: Union[Role, str, None], action: Union[Action, str, None]) -> None:
    """Raise AccessError unless ``role`` may perform ``action``."""
    if not authorize(role, action):
        label = action.value if isinstance(action, Action) else str(action)
        raise AccessError(f"Your role does not permit '{label}' in this organization")


def can_grant_role(actor_role: Union[Role, str], target_role: Union[Role, str]) -> bool:
    """
    Check whether ``actor_role`` may grant, change or revoke ``target_role``.

    Only an OWNER can hand out or take away OWNER; anyone who passes
    manage_roles handles every other role.
    """
    actor = _coerce_role(actor_role)
    target = _coerce_role(target_role)
    if actor is None or target is None:
        return False
    if not authorize(actor, Action.MANAGE_ROLES):
        return False
    if target is Role.OWNER:
        return actor is Role.OWNER
    return True
