"""
Identity collaborator adapter.

The core never authenticates credentials. Whatever sits in front of it (an
authenticating proxy, a session layer) hands over a user id; ``load_caller``
turns that into a ``Caller`` carrying the user's memberships. Store and query
operations still re-read the membership row inside their own transaction, so
a role revoked after the Caller was built cannot slip through.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db.models import MembershipModel, UserModel
from .errors import ConflictError, UnauthenticatedError
from .policy import Role
from .primitives import generate_id, utc_now


@dataclass(frozen=True)
class Caller:
    """An authenticated user and the organizations they belong to."""

    user_id: str
    memberships: Dict[str, Role] = field(default_factory=dict)


def ensure_authenticated(caller: Optional[Caller]) -> Caller:
    """Raise UnauthenticatedError unless a caller identity was resolved."""
    if caller is None or not caller.user_id:
        raise UnauthenticatedError("No authenticated caller")
    return caller


def load_caller(db: Session, user_id: Optional[str]) -> Caller:
    """Resolve a user id into a Caller, or raise UnauthenticatedError."""
    if not user_id:
        raise UnauthenticatedError("No authenticated caller")

    user = db.get(UserModel, user_id)
    if user is None:
        raise UnauthenticatedError("Unknown caller identity")

    rows = db.scalars(
        select(MembershipModel).where(MembershipModel.user_id == user_id)
    ).all()
    return Caller(
        user_id=user_id,
        memberships={m.organization_id: m.role for m in rows},
    )


def register_user(db: Session, email: str, name: Optional[str] = None) -> UserModel:
    """Create a user record for an identity the collaborator has vouched for."""
    normalized = email.strip().lower()
    existing = db.scalar(select(UserModel).where(UserModel.email == normalized))
    if existing is not None:
        raise ConflictError("A user with this email already exists")

    user = UserModel(id=generate_id(), email=normalized, name=name, created_at=utc_now())
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_user_by_email(db: Session, email: str) -> Optional[UserModel]:
    return db.scalar(select(UserModel).where(UserModel.email == email.strip().lower()))
