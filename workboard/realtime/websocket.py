"""
WebSocket bridge from the in-memory broker to connected clients.

A client connects to ``/ws?user_id=<id>`` and sends JSON frames:

    {"type": "subscribe", "channel": "project:<id>"}
    {"type": "unsubscribe", "channel": "project:<id>"}
    {"type": "heartbeat", "channel": "project:<id>", "status": "active"}
    {"type": "ping"}

Broker callbacks run on the publisher's worker thread; they hand messages
to the connection's asyncio queue with ``call_soon_threadsafe``.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from ..db.base import get_session_factory
from ..db.models import MembershipModel, ProjectModel, TaskModel, UserModel
from .channels import Scope, ScopeKind
from .presence import PresenceTracker
from .transports import InMemoryBroker

router = APIRouter(tags=["realtime"])
logger = structlog.get_logger()


def can_subscribe(db: Session, user_id: str, scope: Scope) -> bool:
    """A user may listen on their own channel and on scopes of their organizations."""
    if scope.kind is ScopeKind.USER:
        return scope.id == user_id

    organization_id: Optional[str] = None
    if scope.kind is ScopeKind.ORGANIZATION:
        organization_id = scope.id
    elif scope.kind is ScopeKind.PROJECT:
        project = db.get(ProjectModel, scope.id)
        organization_id = project.organization_id if project else None
    elif scope.kind is ScopeKind.TASK:
        task = db.get(TaskModel, scope.id)
        organization_id = task.project.organization_id if task else None

    if organization_id is None:
        return False
    return (
        db.query(MembershipModel.id)
        .filter(
            MembershipModel.organization_id == organization_id,
            MembershipModel.user_id == user_id,
        )
        .first()
        is not None
    )


class ClientConnection:
    """One socket and its broker subscriptions."""

    def __init__(self, websocket: WebSocket, user_id: str, broker: InMemoryBroker):
        self.websocket = websocket
        self.user_id = user_id
        self.broker = broker
        self.loop = asyncio.get_running_loop()
        self.outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self.subscriptions: Dict[str, int] = {}

    def _forwarder(self) -> Callable[[str, str, Dict[str, Any]], None]:
        def forward(channel: str, event: str, payload: Dict[str, Any]) -> None:
            message = {"channel": channel, "event": event, "payload": payload}
            self.loop.call_soon_threadsafe(self.outbox.put_nowait, message)

        return forward

    def subscribe(self, channel: str) -> None:
        if channel not in self.subscriptions:
            self.subscriptions[channel] = self.broker.subscribe(channel, self._forwarder())

    def unsubscribe(self, channel: str) -> None:
        token = self.subscriptions.pop(channel, None)
        if token is not None:
            self.broker.unsubscribe(channel, token)

    def close(self) -> None:
        for channel in list(self.subscriptions):
            self.unsubscribe(channel)

    async def pump(self) -> None:
        while True:
            message = await self.outbox.get()
            await self.websocket.send_json(message)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, user_id: str = Query(...)):
    """Realtime endpoint bridging broker channels to one client."""
    broker = getattr(websocket.app.state, "transport", None)
    presence: Optional[PresenceTracker] = getattr(websocket.app.state, "presence", None)
    if not isinstance(broker, InMemoryBroker):
        await websocket.close(code=4003, reason="Realtime bridge is not enabled")
        return

    session_factory = getattr(websocket.app.state, "session_factory", None) or get_session_factory()
    with session_factory() as db:
        if db.get(UserModel, user_id) is None:
            await websocket.close(code=4001, reason="Unknown caller identity")
            return

    await websocket.accept()
    connection = ClientConnection(websocket, user_id, broker)
    pump = asyncio.create_task(connection.pump())
    logger.info("ws_connected", user_id=user_id)

    try:
        while True:
            data = await websocket.receive_json()
            msg_type = data.get("type", "")
            channel = data.get("channel", "")

            if msg_type == "ping":
                await websocket.send_json({"type": "pong"})

            elif msg_type == "subscribe":
                try:
                    scope = Scope.parse(channel)
                except ValueError:
                    await websocket.send_json({"type": "error", "message": "Malformed channel"})
                    continue
                with session_factory() as db:
                    allowed = can_subscribe(db, user_id, scope)
                if not allowed:
                    await websocket.send_json(
                        {"type": "error", "channel": channel, "message": "Subscription denied"}
                    )
                    continue
                connection.subscribe(channel)
                await websocket.send_json({"type": "subscribed", "channel": channel})
                if presence is not None:
                    presence.join(scope, user_id)

            elif msg_type == "unsubscribe":
                if channel in connection.subscriptions:
                    connection.unsubscribe(channel)
                    if presence is not None:
                        presence.leave(Scope.parse(channel), user_id)
                await websocket.send_json({"type": "unsubscribed", "channel": channel})

            elif msg_type == "heartbeat":
                if presence is not None and channel in connection.subscriptions:
                    presence.heartbeat(Scope.parse(channel), user_id, data.get("status", "active"))

    except WebSocketDisconnect:
        logger.info("ws_disconnected", user_id=user_id)
    finally:
        pump.cancel()
        if presence is not None:
            for channel in list(connection.subscriptions):
                presence.leave(Scope.parse(channel), user_id)
        connection.close()
