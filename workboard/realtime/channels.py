"""
Realtime channel scopes and event names.

Channel naming is part of the wire contract with the pub/sub broker:
``org:<id>``, ``project:<id>``, ``task:<id>`` and ``user:<id>``.
"""

from enum import Enum
from typing import NamedTuple


class ScopeKind(str, Enum):
    ORGANIZATION = "org"
    PROJECT = "project"
    TASK = "task"
    USER = "user"


class Scope(NamedTuple):
    """A channel a client can subscribe to."""

    kind: ScopeKind
    id: str

    @property
    def channel(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @classmethod
    def parse(cls, channel: str) -> "Scope":
        """Parse ``kind:id`` back into a Scope; ValueError when malformed."""
        kind, sep, ident = channel.partition(":")
        if not sep or not ident:
            raise ValueError(f"Malformed channel name: {channel!r}")
        return cls(ScopeKind(kind), ident)


def organization_scope(organization_id: str) -> Scope:
    return Scope(ScopeKind.ORGANIZATION, organization_id)


def project_scope(project_id: str) -> Scope:
    return Scope(ScopeKind.PROJECT, project_id)


def task_scope(task_id: str) -> Scope:
    return Scope(ScopeKind.TASK, task_id)


def user_scope(user_id: str) -> Scope:
    return Scope(ScopeKind.USER, user_id)


class EventType(str, Enum):
    """Event names as they appear on the wire."""

    TASK_CREATED = "task:created"
    TASK_UPDATED = "task:updated"
    TASK_DELETED = "task:deleted"
    TASK_MOVED = "task:moved"
    COMMENT_CREATED = "comment:created"
    COMMENT_UPDATED = "comment:updated"
    COMMENT_DELETED = "comment:deleted"
    TIME_ENTRY_STARTED = "time:started"
    TIME_ENTRY_STOPPED = "time:stopped"
    NOTIFICATION_CREATED = "notification:created"
    USER_PRESENCE = "user:presence"
    USER_JOINED = "user:joined"
    USER_LEFT = "user:left"

    PROJECT_CREATED = "project:created"
    PROJECT_UPDATED = "project:updated"
    ORGANIZATION_UPDATED = "organization:updated"
    MEMBER_UPDATED = "member:updated"
    MEMBER_REMOVED = "member:removed"
    LABEL_CREATED = "label:created"
    EPIC_CREATED = "epic:created"
    FILE_ATTACHED = "file:attached"
