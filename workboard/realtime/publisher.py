"""
Fire-and-forget event publisher.

Mutations call ``publish`` after their transaction has committed. The call
only enqueues; one background worker drains the queue and hands each event
to the transport. A single worker keeps delivery FIFO per channel (in fact
globally FIFO), and delivery is at-most-once: a transport error or a full
queue is logged and the event is dropped.
"""

import queue
import threading
import time
from typing import Any, Dict, Iterable, Optional, Protocol, Tuple

import structlog

from .channels import EventType, Scope
from .events import DomainEvent
from .transports import Transport

logger = structlog.get_logger()

PendingEvent = Tuple[Scope, EventType, Dict[str, Any]]


class EventPublisher(Protocol):
    def publish(
        self,
        scope: Scope,
        event_type: EventType,
        payload: Dict[str, Any],
        actor_id: Optional[str] = None,
    ) -> Optional[DomainEvent]:
        ...


class NullPublisher:
    """Publisher used when no realtime layer is wired in."""

    def publish(
        self,
        scope: Scope,
        event_type: EventType,
        payload: Dict[str, Any],
        actor_id: Optional[str] = None,
    ) -> Optional[DomainEvent]:
        return None


def publish_all(
    publisher: EventPublisher, events: Iterable[PendingEvent], actor_id: Optional[str] = None
) -> None:
    """Publish a batch in order, never letting a publisher error escape."""
    for scope, event_type, payload in events:
        try:
            publisher.publish(scope, event_type, payload, actor_id=actor_id)
        except Exception as e:
            logger.warning(
                "realtime_publish_failed",
                channel=scope.channel,
                event=event_type.value,
                error=str(e),
            )


class RealtimePublisher:
    """Queue-backed publisher with a single draining worker thread."""

    def __init__(self, transport: Transport, max_queue_size: int = 10000):
        self.transport = transport
        self._queue: "queue.Queue[Optional[DomainEvent]]" = queue.Queue(maxsize=max_queue_size)
        self._thread: Optional[threading.Thread] = None
        self.is_running = False
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    def start(self) -> None:
        """Start the drain worker."""
        if self.is_running:
            return
        self.is_running = True
        self._thread = threading.Thread(
            target=self._drain, name="workboard-realtime", daemon=True
        )
        self._thread.start()
        logger.info("realtime_publisher_started")

    def stop(self, timeout: float = 5.0) -> None:
        """Deliver what is queued, then stop the worker."""
        if not self.is_running:
            return
        self._queue.put(None)
        if self._thread is not None:
            self._thread.join(timeout)
        self.is_running = False
        self._thread = None
        logger.info(
            "realtime_publisher_stopped",
            delivered=self.delivered,
            failed=self.failed,
            dropped=self.dropped,
        )

    def publish(
        self,
        scope: Scope,
        event_type: EventType,
        payload: Dict[str, Any],
        actor_id: Optional[str] = None,
    ) -> Optional[DomainEvent]:
        """Enqueue an event for delivery. Never blocks and never raises."""
        event = DomainEvent(scope, event_type, payload, actor_id=actor_id)
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            logger.warning(
                "realtime_queue_full", channel=event.channel, event=event_type.value
            )
            return None
        return event

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until every queued event was handed to the transport."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _drain(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is None:
                    return
                self._deliver(event)
            finally:
                self._queue.task_done()

    def _deliver(self, event: DomainEvent) -> None:
        try:
            self.transport.trigger(event.channel, event.type.value, event.to_message())
            self.delivered += 1
        except Exception as e:
            self.failed += 1
            logger.warning(
                "realtime_delivery_failed",
                channel=event.channel,
                event=event.type.value,
                error=str(e),
            )
