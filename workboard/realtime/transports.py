"""
Transports the publisher delivers to.

A transport exposes ``trigger(channel, event, payload)`` and may raise on
failure; the publisher logs and swallows the error.
"""

import json
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol

import pusher
import structlog

logger = structlog.get_logger()

Subscriber = Callable[[str, str, Dict[str, Any]], None]


class Transport(Protocol):
    def trigger(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class NullTransport:
    """Discards every event. Used when realtime is switched off."""

    def trigger(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        return None


class InMemoryBroker:
    """
    In-process pub/sub broker.

    Backs the WebSocket bridge in a single-process deployment and the test
    suite. A failing subscriber is logged and skipped; it never prevents the
    other subscribers on the channel from receiving the event.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, Dict[int, Subscriber]] = {}
        self._next_token = 0

    def subscribe(self, channel: str, callback: Subscriber) -> int:
        with self._lock:
            self._next_token += 1
            token = self._next_token
            self._subscribers.setdefault(channel, {})[token] = callback
        return token

    def unsubscribe(self, channel: str, token: int) -> None:
        with self._lock:
            callbacks = self._subscribers.get(channel)
            if not callbacks:
                return
            callbacks.pop(token, None)
            if not callbacks:
                del self._subscribers[channel]

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subscribers.get(channel, {}))

    def trigger(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            callbacks: List[Subscriber] = list(self._subscribers.get(channel, {}).values())

        for callback in callbacks:
            try:
                callback(channel, event, payload)
            except Exception as e:
                logger.warning(
                    "realtime_subscriber_failed", channel=channel, event=event, error=str(e)
                )

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "channels": len(self._subscribers),
                "subscriptions": sum(len(c) for c in self._subscribers.values()),
            }


class PayloadEncoder(json.JSONEncoder):
    """Fall back to ``str`` for values the default encoder rejects."""

    def default(self, o: Any) -> Any:
        return str(o)


def pusher_channel_name(channel: str) -> str:
    """Pusher channel names may not contain ':', so ``task:<id>`` becomes ``task-<id>``."""
    return channel.replace(":", "-")


class PusherTransport:
    """
    Delivers events through the Pusher Channels HTTP API.

    Wraps the official ``pusher`` client, which signs and sends the request.
    Channel names are rewritten with ``pusher_channel_name``; browser clients
    subscribe to the rewritten names.
    """

    def __init__(
        self,
        app_id: str,
        key: str,
        secret: str,
        cluster: str = "mt1",
        timeout: int = 5,
        client: Optional[Any] = None,
    ):
        self.app_id = app_id
        self.cluster = cluster
        self.client = client or pusher.Pusher(
            app_id=app_id,
            key=key,
            secret=secret,
            cluster=cluster,
            ssl=True,
            timeout=timeout,
            json_encoder=PayloadEncoder,
        )

    def trigger(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        self.client.trigger(pusher_channel_name(channel), event, payload)
