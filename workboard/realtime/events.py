"""
Domain events handed from the store to the fan-out layer.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from ..primitives import generate_id, utc_now
from .channels import EventType, Scope


class DomainEvent:
    """
    A notification that a committed mutation changed something in a scope.

    Events are conveniences for connected clients, never a source of truth:
    a client that missed some reconciles through the query engine.
    """

    def __init__(
        self,
        scope: Scope,
        event_type: EventType,
        payload: Dict[str, Any],
        actor_id: Optional[str] = None,
    ):
        self.id = generate_id()
        self.scope = scope
        self.type = event_type
        self.payload = payload
        self.actor_id = actor_id
        self.created_at: datetime = utc_now()

    @property
    def channel(self) -> str:
        return self.scope.channel

    def to_message(self) -> Dict[str, Any]:
        """Body sent to the transport."""
        return {
            "id": self.id,
            "type": self.type.value,
            "data": self.payload,
            "actor_id": self.actor_id,
            "timestamp": self.created_at.isoformat(),
        }

    def __str__(self) -> str:
        return f"DomainEvent(id={self.id[-8:]}, channel={self.channel}, type={self.type.value})"

    def __repr__(self) -> str:
        return self.__str__()
