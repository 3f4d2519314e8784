"""
Presence tracking per scope.

Keeps who is currently viewing a scope and announces joins, leaves and
heartbeats through the publisher. Presence is process-local and best-effort,
like every other realtime event.
"""

import threading
import time
from typing import Dict, List, Optional

from .channels import EventType, Scope
from .publisher import EventPublisher


class PresenceTracker:
    """Tracks viewers per channel and publishes presence events."""

    def __init__(self, publisher: EventPublisher, clock=time.monotonic):
        self.publisher = publisher
        self._clock = clock
        self._lock = threading.Lock()
        self._members: Dict[str, Dict[str, float]] = {}

    def join(self, scope: Scope, user_id: str) -> bool:
        """Register ``user_id`` on ``scope``. Returns True when newly joined."""
        with self._lock:
            viewers = self._members.setdefault(scope.channel, {})
            is_new = user_id not in viewers
            viewers[user_id] = self._clock()

        if is_new:
            self.publisher.publish(
                scope, EventType.USER_JOINED, {"user_id": user_id}, actor_id=user_id
            )
        return is_new

    def heartbeat(self, scope: Scope, user_id: str, status: str = "active") -> None:
        with self._lock:
            viewers = self._members.setdefault(scope.channel, {})
            viewers[user_id] = self._clock()

        self.publisher.publish(
            scope,
            EventType.USER_PRESENCE,
            {"user_id": user_id, "status": status},
            actor_id=user_id,
        )

    def leave(self, scope: Scope, user_id: str) -> bool:
        """Remove ``user_id`` from ``scope``. Returns True when it was present."""
        with self._lock:
            viewers = self._members.get(scope.channel, {})
            was_present = viewers.pop(user_id, None) is not None
            if not viewers:
                self._members.pop(scope.channel, None)

        if was_present:
            self.publisher.publish(
                scope, EventType.USER_LEFT, {"user_id": user_id}, actor_id=user_id
            )
        return was_present

    def members(self, scope: Scope) -> List[str]:
        with self._lock:
            return sorted(self._members.get(scope.channel, {}))

    def expire(self, max_idle_seconds: float, now: Optional[float] = None) -> int:
        """Drop viewers idle for longer than ``max_idle_seconds``."""
        now = self._clock() if now is None else now
        stale = []
        with self._lock:
            for channel, viewers in self._members.items():
                for user_id, seen in viewers.items():
                    if now - seen > max_idle_seconds:
                        stale.append((channel, user_id))

        for channel, user_id in stale:
            self.leave(Scope.parse(channel), user_id)
        return len(stale)
