"""Tests for the realtime fan-out layer."""

import json
import threading

import pusher
import pytest

from workboard.config import Settings
from workboard.db.models import TaskModel
from workboard.realtime import (
    EventType,
    InMemoryBroker,
    NullTransport,
    PresenceTracker,
    PusherTransport,
    RealtimePublisher,
    Scope,
    ScopeKind,
    build_transport,
    project_scope,
    publish_all,
    pusher_channel_name,
    task_scope,
)
from workboard.schemas import TaskCreate
from workboard.store import WorkItemStore


class FailingTransport:
    def __init__(self):
        self.calls = 0

    def trigger(self, channel, event, payload):
        self.calls += 1
        raise RuntimeError("broker unavailable")


class ExplodingPublisher:
    def publish(self, scope, event_type, payload, actor_id=None):
        raise RuntimeError("publisher is down")


@pytest.fixture
def broker():
    return InMemoryBroker()


@pytest.fixture
def realtime(broker):
    publisher = RealtimePublisher(broker)
    publisher.start()
    yield publisher
    publisher.stop()


class TestScopes:
    def test_channel_names(self):
        assert project_scope("p1").channel == "project:p1"
        assert task_scope("t1").channel == "task:t1"

    def test_parse_round_trip(self):
        scope = Scope.parse("org:abc")
        assert scope.kind is ScopeKind.ORGANIZATION
        assert scope.id == "abc"

    @pytest.mark.parametrize("channel", ["project", "project:", "galaxy:1"])
    def test_parse_rejects_malformed(self, channel):
        with pytest.raises(ValueError):
            Scope.parse(channel)


class TestInMemoryBroker:
    def test_delivers_to_channel_subscribers_only(self, broker):
        received = []
        broker.subscribe("task:1", lambda c, e, p: received.append((c, e, p)))
        broker.subscribe("task:2", lambda c, e, p: received.append((c, e, p)))

        broker.trigger("task:1", "task:updated", {"id": "1"})

        assert received == [("task:1", "task:updated", {"id": "1"})]

    def test_unsubscribe(self, broker):
        received = []
        token = broker.subscribe("task:1", lambda c, e, p: received.append(e))
        broker.unsubscribe("task:1", token)
        broker.trigger("task:1", "task:updated", {})

        assert received == []
        assert broker.subscriber_count("task:1") == 0

    def test_failing_subscriber_does_not_block_others(self, broker):
        received = []

        def explode(channel, event, payload):
            raise RuntimeError("client went away")

        broker.subscribe("task:1", explode)
        broker.subscribe("task:1", lambda c, e, p: received.append(e))
        broker.trigger("task:1", "task:updated", {})

        assert received == ["task:updated"]

    def test_stats(self, broker):
        broker.subscribe("task:1", lambda c, e, p: None)
        broker.subscribe("task:1", lambda c, e, p: None)
        broker.subscribe("org:1", lambda c, e, p: None)
        assert broker.get_stats() == {"channels": 2, "subscriptions": 3}


class TestRealtimePublisher:
    def test_fifo_per_channel(self, broker, realtime):
        received = []
        broker.subscribe("project:p", lambda c, e, p: received.append(p["n"]))

        for n in range(50):
            realtime.publish(project_scope("p"), EventType.TASK_UPDATED, {"n": n})

        assert realtime.flush(timeout=5)
        assert received == list(range(50))
        assert realtime.delivered == 50

    def test_message_shape(self, broker, realtime):
        received = []
        broker.subscribe("task:t", lambda c, e, p: received.append((e, p)))

        realtime.publish(task_scope("t"), EventType.COMMENT_CREATED, {"body": "hi"}, actor_id="u1")
        realtime.flush()

        event, message = received[0]
        assert event == "comment:created"
        assert message["type"] == "comment:created"
        assert message["data"] == {"body": "hi"}
        assert message["actor_id"] == "u1"
        assert "timestamp" in message and "id" in message

    def test_transport_failure_is_counted_not_raised(self):
        transport = FailingTransport()
        publisher = RealtimePublisher(transport)
        publisher.start()
        try:
            publisher.publish(task_scope("t"), EventType.TASK_UPDATED, {})
            publisher.publish(task_scope("t"), EventType.TASK_UPDATED, {})
            assert publisher.flush()
        finally:
            publisher.stop()

        assert transport.calls == 2
        assert publisher.failed == 2
        assert publisher.delivered == 0

    def test_full_queue_drops(self):
        publisher = RealtimePublisher(NullTransport(), max_queue_size=1)

        assert publisher.publish(task_scope("t"), EventType.TASK_UPDATED, {}) is not None
        assert publisher.publish(task_scope("t"), EventType.TASK_UPDATED, {}) is None
        assert publisher.dropped == 1

    def test_publish_does_not_block_on_slow_transport(self):
        release = threading.Event()

        class SlowTransport:
            def trigger(self, channel, event, payload):
                release.wait(5)

        publisher = RealtimePublisher(SlowTransport())
        publisher.start()
        try:
            for _ in range(5):
                publisher.publish(task_scope("t"), EventType.TASK_UPDATED, {})
            assert publisher.pending >= 1
        finally:
            release.set()
            publisher.stop()

    def test_stop_drains_queue(self, broker):
        received = []
        broker.subscribe("task:t", lambda c, e, p: received.append(e))
        publisher = RealtimePublisher(broker)
        publisher.start()
        for _ in range(3):
            publisher.publish(task_scope("t"), EventType.TASK_UPDATED, {})
        publisher.stop()

        assert len(received) == 3
        assert publisher.is_running is False


class TestPublishAfterCommit:
    def test_mutation_survives_publisher_failure(self, db_session, owner, project):
        store = WorkItemStore(db_session, ExplodingPublisher())

        task = store.tasks.create_task(owner, project.id, TaskCreate(title="Still saved"))

        assert db_session.get(TaskModel, task.id) is not None

    def test_mutation_survives_transport_failure(self, db_session, owner, project):
        publisher = RealtimePublisher(FailingTransport())
        publisher.start()
        try:
            store = WorkItemStore(db_session, publisher)
            task = store.tasks.create_task(owner, project.id, TaskCreate(title="Saved"))
            publisher.flush()
        finally:
            publisher.stop()

        assert db_session.get(TaskModel, task.id).title == "Saved"
        assert publisher.failed >= 1

    def test_publish_all_keeps_going_after_error(self):
        calls = []

        class Flaky:
            def publish(self, scope, event_type, payload, actor_id=None):
                calls.append(payload["n"])
                if payload["n"] == 0:
                    raise RuntimeError("boom")

        publish_all(
            Flaky(),
            [(task_scope("t"), EventType.TASK_UPDATED, {"n": n}) for n in range(3)],
            actor_id="u",
        )
        assert calls == [0, 1, 2]


class TestPresence:
    def test_join_and_leave_publish_once(self, publisher):
        presence = PresenceTracker(publisher)
        scope = project_scope("p")

        assert presence.join(scope, "u1") is True
        assert presence.join(scope, "u1") is False
        assert presence.members(scope) == ["u1"]
        assert presence.leave(scope, "u1") is True
        assert presence.leave(scope, "u1") is False

        assert [e.type for e in publisher.events] == [EventType.USER_JOINED, EventType.USER_LEFT]

    def test_heartbeat_publishes_status(self, publisher):
        presence = PresenceTracker(publisher)
        presence.heartbeat(task_scope("t"), "u1", status="idle")

        event = publisher.events[0]
        assert event.type is EventType.USER_PRESENCE
        assert event.payload == {"user_id": "u1", "status": "idle"}

    def test_expire_idle_viewers(self, publisher):
        now = [100.0]
        presence = PresenceTracker(publisher, clock=lambda: now[0])
        scope = project_scope("p")
        presence.join(scope, "stale")
        now[0] = 150.0
        presence.join(scope, "fresh")

        assert presence.expire(max_idle_seconds=30, now=160.0) == 1
        assert presence.members(scope) == ["fresh"]


class RecordingPusherClient:
    def __init__(self, **options):
        self.options = options
        self.calls = []

    def trigger(self, channels, event_name, data, socket_id=None):
        self.calls.append((channels, event_name, data))
        return {}


class RecordingBackend:
    """Stands in for the HTTP backend of the pusher client."""

    sent = []

    def __init__(self, client, **options):
        self.client = client

    def send_request(self, request):
        RecordingBackend.sent.append(request)
        return {}


class TestPusherTransport:
    def test_channel_names_are_pusher_safe(self):
        assert pusher_channel_name("task:01HZX") == "task-01HZX"
        assert pusher_channel_name("org:abc") == "org-abc"

    def test_triggers_through_client(self):
        client = RecordingPusherClient()
        transport = PusherTransport(app_id="123", key="k", secret="s", client=client)

        transport.trigger("task:t1", "task:updated", {"id": "t1"})

        assert client.calls == [("task-t1", "task:updated", {"id": "t1"})]

    def test_client_errors_propagate(self):
        class BrokenClient:
            def trigger(self, channels, event_name, data, socket_id=None):
                raise RuntimeError("pusher unavailable")

        transport = PusherTransport(app_id="123", key="k", secret="s", client=BrokenClient())
        with pytest.raises(RuntimeError):
            transport.trigger("task:t1", "task:updated", {})

    def test_sdk_builds_signed_event_request(self):
        RecordingBackend.sent = []
        client = pusher.Pusher(
            app_id="123", key="app-key", secret="app-secret", backend=RecordingBackend
        )
        transport = PusherTransport(app_id="123", key="app-key", secret="app-secret", client=client)

        transport.trigger("project:p1", "task:created", {"id": "t1"})

        [request] = RecordingBackend.sent
        assert request.method == "POST"
        assert request.path == "/apps/123/events"
        body = json.loads(request.body)
        assert body["name"] == "task:created"
        assert body["channels"] == ["project-p1"]
        assert json.loads(body["data"]) == {"id": "t1"}


class TestBuildTransport:
    def test_memory(self):
        assert isinstance(build_transport(Settings(realtime_transport="memory")), InMemoryBroker)

    def test_none(self):
        assert isinstance(build_transport(Settings(realtime_transport="none")), NullTransport)

    def test_pusher_requires_credentials(self):
        with pytest.raises(ValueError):
            build_transport(Settings(realtime_transport="pusher"))

    def test_pusher(self, monkeypatch):
        monkeypatch.setattr(pusher, "Pusher", RecordingPusherClient)
        transport = build_transport(
            Settings(
                realtime_transport="pusher",
                pusher_app_id="1",
                pusher_key="k",
                pusher_secret="s",
                pusher_cluster="eu",
            )
        )

        assert isinstance(transport, PusherTransport)
        options = transport.client.options
        assert options["app_id"] == "1"
        assert options["cluster"] == "eu"
        assert options["ssl"] is True

    def test_unknown(self):
        with pytest.raises(ValueError):
            build_transport(Settings(realtime_transport="carrier-pigeon"))
