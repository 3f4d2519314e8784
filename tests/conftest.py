"""Test configuration and fixtures."""

import itertools
from typing import Any, Dict, List, Optional

import pytest

from workboard.db.base import build_engine, get_session_factory, init_database
from workboard.db.models import UserModel
from workboard.identity import Caller, register_user
from workboard.policy import Role
from workboard.realtime import DomainEvent, EventType, Scope
from workboard.schemas import InviteCreate, OrganizationCreate, ProjectCreate
from workboard.store import WorkItemStore


class RecordingPublisher:
    """Publisher that keeps every event in memory, in publish order."""

    def __init__(self):
        self.events: List[DomainEvent] = []

    def publish(
        self,
        scope: Scope,
        event_type: EventType,
        payload: Dict[str, Any],
        actor_id: Optional[str] = None,
    ) -> DomainEvent:
        event = DomainEvent(scope, event_type, payload, actor_id=actor_id)
        self.events.append(event)
        return event

    def of_type(self, event_type: EventType) -> List[DomainEvent]:
        return [e for e in self.events if e.type is event_type]

    def on_channel(self, channel: str) -> List[DomainEvent]:
        return [e for e in self.events if e.channel == channel]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite:///:memory:")
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = get_session_factory(engine)()
    yield session
    session.close()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def store(db_session, publisher) -> WorkItemStore:
    return WorkItemStore(db_session, publisher)


@pytest.fixture
def make_user(db_session):
    """Register users with unique emails and return their Caller."""
    counter = itertools.count(1)

    def _make(name: Optional[str] = None) -> Caller:
        n = next(counter)
        user = register_user(db_session, f"user{n}@example.com", name or f"User {n}")
        return Caller(user_id=user.id)

    return _make


@pytest.fixture
def owner(make_user) -> Caller:
    return make_user("Olivia Owner")


@pytest.fixture
def organization(store, owner):
    return store.organizations.create_organization(
        owner, OrganizationCreate(name="Acme", slug="acme")
    )


@pytest.fixture
def add_member(store, db_session, owner, make_user):
    """Join a new user to an organization through an invite."""

    def _add(organization_id: str, role: Role = Role.MEMBER, name: Optional[str] = None) -> Caller:
        caller = make_user(name)
        user = db_session.get(UserModel, caller.user_id)
        invite = store.organizations.invite_member(
            owner, organization_id, InviteCreate(email=user.email, role=role)
        )
        store.organizations.accept_invite(caller, invite.token)
        return caller

    return _add


@pytest.fixture
def project(store, owner, organization):
    return store.projects.create_project(
        owner, organization.id, ProjectCreate(name="Website", key="WEB")
    )
