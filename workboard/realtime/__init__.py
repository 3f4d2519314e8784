"""
Realtime fan-out for Workboard.

Publishes domain events to per-scope channels (``org:<id>``,
``project:<id>``, ``task:<id>``, ``user:<id>``) through a pluggable
transport. Holds no durable state.
"""

from typing import Optional

from ..config import Settings, get_settings
from .channels import (
    EventType,
    Scope,
    ScopeKind,
    organization_scope,
    project_scope,
    task_scope,
    user_scope,
)
from .events import DomainEvent
from .presence import PresenceTracker
from .publisher import EventPublisher, NullPublisher, RealtimePublisher, publish_all
from .transports import (
    InMemoryBroker,
    NullTransport,
    PusherTransport,
    Transport,
    pusher_channel_name,
)


def build_transport(settings: Optional[Settings] = None) -> Transport:
    """Select the transport named by REALTIME_TRANSPORT."""
    settings = settings or get_settings()
    kind = settings.realtime_transport.lower()

    if kind == "pusher":
        if not (settings.pusher_app_id and settings.pusher_key and settings.pusher_secret):
            raise ValueError("Pusher transport requires PUSHER_APP_ID, PUSHER_KEY and PUSHER_SECRET")
        return PusherTransport(
            app_id=settings.pusher_app_id,
            key=settings.pusher_key,
            secret=settings.pusher_secret,
            cluster=settings.pusher_cluster,
        )
    if kind == "memory":
        return InMemoryBroker()
    if kind == "none":
        return NullTransport()
    raise ValueError(f"Unknown realtime transport: {settings.realtime_transport}")


__all__ = [
    "DomainEvent",
    "EventPublisher",
    "EventType",
    "InMemoryBroker",
    "NullPublisher",
    "NullTransport",
    "PresenceTracker",
    "PusherTransport",
    "RealtimePublisher",
    "Scope",
    "ScopeKind",
    "Transport",
    "build_transport",
    "organization_scope",
    "project_scope",
    "publish_all",
    "pusher_channel_name",
    "task_scope",
    "user_scope",
]
