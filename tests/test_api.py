"""API-level tests for the /api routes and the realtime WebSocket."""

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketDisconnect

from workboard.api import app
from workboard.db.base import Base, get_db
from workboard.realtime import InMemoryBroker

# Create an in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=test_engine
)


def override_get_db():
    """Override the get_db dependency for testing."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="module", autouse=True)
def setup_database():
    """Create all tables before running tests, drop them after."""
    from workboard.db import models  # noqa: F401

    app.dependency_overrides[get_db] = override_get_db
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)
    app.dependency_overrides.pop(get_db, None)


client = TestClient(app)


def new_user(name="Tester") -> dict:
    response = client.post(
        "/api/users", json={"email": f"{uuid.uuid4().hex[:12]}@example.com", "name": name}
    )
    assert response.status_code == 201
    return response.json()


def auth(user: dict) -> dict:
    return {"X-User-Id": user["id"]}


def new_org(user: dict) -> dict:
    slug = f"org-{uuid.uuid4().hex[:8]}"
    response = client.post(
        "/api/organizations", json={"name": "Acme", "slug": slug}, headers=auth(user)
    )
    assert response.status_code == 201
    return response.json()


def new_project(user: dict, org: dict, key="WEB") -> dict:
    response = client.post(
        f"/api/organizations/{org['id']}/projects",
        json={"name": "Website", "key": key},
        headers=auth(user),
    )
    assert response.status_code == 201
    return response.json()


def join(owner: dict, org: dict, role: str) -> dict:
    member = new_user()
    invite = client.post(
        f"/api/organizations/{org['id']}/invites",
        json={"email": member["email"], "role": role},
        headers=auth(owner),
    )
    assert invite.status_code == 201
    accepted = client.post(
        "/api/invites/accept", json={"token": invite.json()["token"]}, headers=auth(member)
    )
    assert accepted.status_code == 200
    return member


class TestSystemEndpoints:
    def test_health(self):
        assert client.get("/health").json() == {"status": "ok"}

    def test_single_health_route(self):
        health_paths = [r.path for r in app.routes if "health" in getattr(r, "path", "")]
        assert health_paths == ["/health"]

    def test_version(self):
        assert "version" in client.get("/version").json()

    def test_status_without_publisher(self):
        assert client.get("/status").json()["realtime"]["status"] == "stopped"


class TestIdentity:
    def test_missing_header_is_unauthenticated(self):
        response = client.get("/api/me")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    def test_unknown_user_is_unauthenticated(self):
        response = client.get("/api/me", headers={"X-User-Id": "ghost"})
        assert response.status_code == 401

    def test_me_lists_memberships(self):
        user = new_user()
        org = new_org(user)
        response = client.get("/api/me", headers=auth(user))
        assert response.json()["memberships"] == {org["id"]: "OWNER"}

    def test_duplicate_email_conflicts(self):
        user = new_user()
        response = client.post("/api/users", json={"email": user["email"]})
        assert response.status_code == 409


class TestOrganizationRoutes:
    def test_foreign_organization_is_404(self):
        owner = new_user()
        org = new_org(owner)
        outsider = new_user()

        response = client.get(f"/api/organizations/{org['id']}", headers=auth(outsider))
        assert response.status_code == 404

    def test_invalid_slug_is_422(self):
        user = new_user()
        response = client.post(
            "/api/organizations", json={"name": "Bad", "slug": "Bad Slug"}, headers=auth(user)
        )
        assert response.status_code == 422

    def test_members_and_roles(self):
        owner = new_user()
        org = new_org(owner)
        member = join(owner, org, "MEMBER")

        response = client.patch(
            f"/api/organizations/{org['id']}/members/{member['id']}",
            json={"role": "MANAGER"},
            headers=auth(owner),
        )
        assert response.status_code == 200
        assert response.json()["role"] == "MANAGER"

        members = client.get(f"/api/organizations/{org['id']}/members", headers=auth(owner))
        assert {m["user_id"] for m in members.json()} == {owner["id"], member["id"]}

    def test_last_owner_cannot_leave(self):
        owner = new_user()
        org = new_org(owner)
        response = client.delete(
            f"/api/organizations/{org['id']}/members/{owner['id']}", headers=auth(owner)
        )
        assert response.status_code == 409


class TestTaskRoutes:
    def test_create_and_query_tasks(self):
        owner = new_user()
        org = new_org(owner)
        project = new_project(owner, org)

        for i in range(5):
            status = "DONE" if i % 2 else "TODO"
            response = client.post(
                f"/api/projects/{project['id']}/tasks",
                json={"title": f"Task {i}", "status": status},
                headers=auth(owner),
            )
            assert response.status_code == 201

        response = client.get(
            f"/api/projects/{project['id']}/tasks",
            params={"status": ["DONE"], "limit": 1, "page": 2},
            headers=auth(owner),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["total_pages"] == 2
        assert [item["title"] for item in body["items"]] == ["Task 3"]

    def test_query_limit_out_of_range(self):
        owner = new_user()
        org = new_org(owner)
        project = new_project(owner, org)

        response = client.get(
            f"/api/projects/{project['id']}/tasks", params={"limit": 0}, headers=auth(owner)
        )
        assert response.status_code == 422

    def test_query_foreign_project_is_forbidden(self):
        owner = new_user()
        project = new_project(owner, new_org(owner))
        outsider = new_user()

        response = client.get(f"/api/projects/{project['id']}/tasks", headers=auth(outsider))
        assert response.status_code == 403

    def test_viewer_cannot_update_task(self):
        owner = new_user()
        org = new_org(owner)
        project = new_project(owner, org)
        viewer = join(owner, org, "VIEWER")
        task = client.post(
            f"/api/projects/{project['id']}/tasks", json={"title": "Locked"}, headers=auth(owner)
        ).json()

        response = client.patch(
            f"/api/tasks/{task['id']}", json={"status": "DONE"}, headers=auth(viewer)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "access_denied"

    def test_update_and_delete_task(self):
        owner = new_user()
        project = new_project(owner, new_org(owner))
        parent = client.post(
            f"/api/projects/{project['id']}/tasks", json={"title": "Parent"}, headers=auth(owner)
        ).json()
        child = client.post(
            f"/api/projects/{project['id']}/tasks",
            json={"title": "Child", "parent_task_id": parent["id"]},
            headers=auth(owner),
        ).json()

        updated = client.patch(
            f"/api/tasks/{parent['id']}", json={"priority": "URGENT"}, headers=auth(owner)
        )
        assert updated.json()["priority"] == "URGENT"

        deleted = client.delete(f"/api/tasks/{parent['id']}", headers=auth(owner))
        assert deleted.json()["deleted_task_ids"] == [parent["id"], child["id"]]
        assert client.get(f"/api/tasks/{child['id']}", headers=auth(owner)).status_code == 404

    def test_date_order_is_422(self):
        owner = new_user()
        project = new_project(owner, new_org(owner))
        response = client.post(
            f"/api/projects/{project['id']}/tasks",
            json={"title": "Backwards", "start_date": "2026-05-02", "due_date": "2026-05-01"},
            headers=auth(owner),
        )
        assert response.status_code == 422
        assert response.json()["error"] == "validation_failed"

    def test_timer_and_comments(self):
        owner = new_user()
        project = new_project(owner, new_org(owner))
        task = client.post(
            f"/api/projects/{project['id']}/tasks", json={"title": "Work"}, headers=auth(owner)
        ).json()

        started = client.post(f"/api/tasks/{task['id']}/timer/start", json={}, headers=auth(owner))
        assert started.status_code == 201
        again = client.post(f"/api/tasks/{task['id']}/timer/start", json={}, headers=auth(owner))
        assert again.status_code == 409
        stopped = client.post(f"/api/tasks/{task['id']}/timer/stop", json={}, headers=auth(owner))
        assert stopped.json()["ended_at"] is not None

        comment = client.post(
            f"/api/tasks/{task['id']}/comments", json={"body": "Done"}, headers=auth(owner)
        )
        assert comment.status_code == 201
        listed = client.get(f"/api/tasks/{task['id']}/comments", headers=auth(owner))
        assert [c["body"] for c in listed.json()] == ["Done"]


class TestDashboardRoute:
    def test_dashboard(self):
        owner = new_user()
        org = new_org(owner)
        new_project(owner, org)

        response = client.get(f"/api/organizations/{org['id']}/dashboard", headers=auth(owner))
        assert response.status_code == 200
        assert response.json()["total_projects"] == 1


@pytest.fixture
def realtime_bridge():
    broker = InMemoryBroker()
    app.state.transport = broker
    app.state.session_factory = TestSessionLocal
    yield broker
    del app.state.transport
    del app.state.session_factory


class TestWebSocket:
    def test_ping(self, realtime_bridge):
        user = new_user()
        with client.websocket_connect(f"/ws?user_id={user['id']}") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_receives_events_on_own_channel(self, realtime_bridge):
        user = new_user()
        channel = f"user:{user['id']}"
        with client.websocket_connect(f"/ws?user_id={user['id']}") as ws:
            ws.send_json({"type": "subscribe", "channel": channel})
            assert ws.receive_json() == {"type": "subscribed", "channel": channel}

            realtime_bridge.trigger(channel, "notification:created", {"title": "Hi"})

            assert ws.receive_json() == {
                "channel": channel,
                "event": "notification:created",
                "payload": {"title": "Hi"},
            }

    def test_cannot_subscribe_to_foreign_scopes(self, realtime_bridge):
        user = new_user()
        owner = new_user()
        org = new_org(owner)
        with client.websocket_connect(f"/ws?user_id={user['id']}") as ws:
            for channel in (f"user:{owner['id']}", f"org:{org['id']}"):
                ws.send_json({"type": "subscribe", "channel": channel})
                assert ws.receive_json()["type"] == "error"
        assert realtime_bridge.get_stats()["subscriptions"] == 0

    def test_unknown_user_is_rejected(self, realtime_bridge):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?user_id=ghost"):
                pass
        assert exc_info.value.code == 4001
