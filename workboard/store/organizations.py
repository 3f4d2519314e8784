"""
Organization, membership, invite and label operations.
"""

import secrets
from typing import List

import structlog

from ..db.models import (
    InviteModel,
    LabelModel,
    MembershipModel,
    OrganizationModel,
    UserModel,
)
from ..errors import AccessError, ConflictError, NotFoundError
from ..identity import Caller, ensure_authenticated
from ..policy import Action, Role, can_grant_role
from ..primitives import ActivityType, generate_id, utc_now
from ..realtime import EventType, organization_scope, user_scope
from ..schemas import InviteCreate, LabelCreate, OrganizationCreate, OrganizationUpdate
from ._base import StoreService, change_set

logger = structlog.get_logger()


class OrganizationService(StoreService):
    """Service for tenants and the people in them."""

    def create_organization(self, caller: Caller, data: OrganizationCreate) -> OrganizationModel:
        """Create an organization. The creator becomes its first OWNER."""
        ensure_authenticated(caller)
        if self.db.query(OrganizationModel).filter(OrganizationModel.slug == data.slug).first():
            raise ConflictError(f"Organization slug '{data.slug}' is already taken")

        now = utc_now()
        organization = OrganizationModel(
            id=generate_id(), name=data.name, slug=data.slug, created_at=now, updated_at=now
        )
        with self.transaction():
            self.db.add(organization)
            self.db.add(
                MembershipModel(
                    id=generate_id(),
                    user_id=caller.user_id,
                    organization_id=organization.id,
                    role=Role.OWNER,
                    created_at=now,
                    updated_at=now,
                )
            )
            self.activity.record(
                ActivityType.ORGANIZATION_CREATED,
                organization_id=organization.id,
                actor_id=caller.user_id,
                meta={"name": organization.name, "slug": organization.slug},
            )

        logger.info("organization_created", organization_id=organization.id)
        return organization

    def get_organization(self, caller: Caller, organization_id: str) -> OrganizationModel:
        organization, _ = self._load_organization(caller, organization_id)
        return organization

    def list_organizations(self, caller: Caller) -> List[OrganizationModel]:
        """Organizations the caller currently belongs to, by name."""
        ensure_authenticated(caller)
        return (
            self.db.query(OrganizationModel)
            .join(MembershipModel, MembershipModel.organization_id == OrganizationModel.id)
            .filter(MembershipModel.user_id == caller.user_id)
            .order_by(OrganizationModel.name, OrganizationModel.id)
            .all()
        )

    def update_organization(
        self, caller: Caller, organization_id: str, data: OrganizationUpdate
    ) -> OrganizationModel:
        """Change name and logo. The slug is fixed at creation."""
        organization, _ = self._load_organization(caller, organization_id)
        self._require(caller, organization_id, Action.MANAGE_ORG)

        changes = {}
        for field, value in data.model_dump(exclude_unset=True).items():
            if field == "name" and value is None:
                continue
            before = getattr(organization, field)
            if before != value:
                changes[field] = change_set(before, value)

        if not changes:
            return organization

        with self.transaction():
            for field, change in changes.items():
                setattr(organization, field, change["to"])
            self.activity.record(
                ActivityType.ORGANIZATION_UPDATED,
                organization_id=organization.id,
                actor_id=caller.user_id,
                meta={"changes": changes},
            )

        self._publish(
            [(organization_scope(organization.id), EventType.ORGANIZATION_UPDATED, organization.to_dict())],
            caller,
        )
        return organization

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    def list_members(self, caller: Caller, organization_id: str) -> List[MembershipModel]:
        self._load_organization(caller, organization_id)
        return (
            self.db.query(MembershipModel)
            .filter(MembershipModel.organization_id == organization_id)
            .order_by(MembershipModel.created_at, MembershipModel.id)
            .all()
        )

    def invite_member(
        self, caller: Caller, organization_id: str, data: InviteCreate
    ) -> InviteModel:
        """
        Create a single-use invite.

        The returned model carries the token; it is the only time the token
        leaves the store.
        """
        self._load_organization(caller, organization_id)
        role = self._require(caller, organization_id, Action.INVITE_USER)
        if not can_grant_role(role, data.role):
            raise AccessError(f"Your role cannot grant '{data.role.value}'")

        email = data.email.strip().lower()
        existing_user = self.db.query(UserModel).filter(UserModel.email == email).first()
        if existing_user and self._is_member(organization_id, existing_user.id):
            raise ConflictError("This person is already a member of the organization")

        invite = InviteModel(
            id=generate_id(),
            organization_id=organization_id,
            email=email,
            role=data.role,
            token=secrets.token_urlsafe(32),
            accepted=False,
            created_at=utc_now(),
        )
        with self.transaction():
            self.db.add(invite)
            self.activity.record(
                ActivityType.MEMBER_INVITED,
                organization_id=organization_id,
                actor_id=caller.user_id,
                meta={"invite_id": invite.id, "email": email, "role": data.role.value},
            )

        logger.info("member_invited", organization_id=organization_id, invite_id=invite.id)
        return invite

    def accept_invite(self, caller: Caller, token: str) -> MembershipModel:
        """Turn an open invite addressed to the caller into a membership."""
        ensure_authenticated(caller)
        invite = (
            self.db.query(InviteModel)
            .filter(InviteModel.token == token, InviteModel.accepted.is_(False))
            .first()
        )
        if invite is None:
            raise NotFoundError("Invite", token[:8])

        user = self.db.get(UserModel, caller.user_id)
        if user is None or user.email.lower() != invite.email:
            raise AccessError("This invite was issued to a different email address")
        if self._is_member(invite.organization_id, caller.user_id):
            raise ConflictError("You are already a member of this organization")

        now = utc_now()
        membership = MembershipModel(
            id=generate_id(),
            user_id=caller.user_id,
            organization_id=invite.organization_id,
            role=invite.role,
            created_at=now,
            updated_at=now,
        )
        with self.transaction():
            self._lock_organization(invite.organization_id)
            invite.accepted = True
            self.db.add(membership)
            self.activity.record(
                ActivityType.MEMBER_JOINED,
                organization_id=invite.organization_id,
                actor_id=caller.user_id,
                meta={"invite_id": invite.id, "role": invite.role.value},
            )

        self._publish(
            [(organization_scope(invite.organization_id), EventType.MEMBER_UPDATED, membership.to_dict())],
            caller,
        )
        return membership

    def change_member_role(
        self, caller: Caller, organization_id: str, user_id: str, new_role: Role
    ) -> MembershipModel:
        self._load_organization(caller, organization_id)
        actor_role = self._require(caller, organization_id, Action.MANAGE_ROLES)
        new_role = Role(new_role)

        target = self._membership(organization_id, user_id)
        if target is None:
            raise NotFoundError("Member", user_id)
        if not (can_grant_role(actor_role, target.role) and can_grant_role(actor_role, new_role)):
            raise AccessError("Only an owner can grant or revoke the OWNER role")
        if target.role is new_role:
            return target

        previous = target.role
        with self.transaction():
            self._lock_organization(organization_id)
            if previous is Role.OWNER:
                self._ensure_other_owner(organization_id, user_id)
            target.role = new_role
            self.activity.record(
                ActivityType.MEMBER_ROLE_CHANGED,
                organization_id=organization_id,
                actor_id=caller.user_id,
                meta={"user_id": user_id, "from": previous.value, "to": new_role.value},
            )

        logger.info(
            "member_role_changed",
            organization_id=organization_id,
            user_id=user_id,
            role=new_role.value,
        )
        self._publish(
            [
                (organization_scope(organization_id), EventType.MEMBER_UPDATED, target.to_dict()),
                (user_scope(user_id), EventType.MEMBER_UPDATED, target.to_dict()),
            ],
            caller,
        )
        return target

    def remove_member(self, caller: Caller, organization_id: str, user_id: str) -> None:
        """Remove a member. Anyone may leave; removing others needs manage_roles."""
        _, actor_role = self._load_organization(caller, organization_id)
        target = self._membership(organization_id, user_id)
        if target is None:
            raise NotFoundError("Member", user_id)

        if user_id != caller.user_id:
            self._require(caller, organization_id, Action.MANAGE_ROLES)
            if not can_grant_role(actor_role, target.role):
                raise AccessError("Only an owner can remove another owner")

        removed = target.to_dict()
        with self.transaction():
            self._lock_organization(organization_id)
            if target.role is Role.OWNER:
                self._ensure_other_owner(organization_id, user_id)
            self.db.delete(target)
            self.activity.record(
                ActivityType.MEMBER_REMOVED,
                organization_id=organization_id,
                actor_id=caller.user_id,
                meta={"user_id": user_id, "role": removed["role"]},
            )

        self._publish(
            [
                (organization_scope(organization_id), EventType.MEMBER_REMOVED, removed),
                (user_scope(user_id), EventType.MEMBER_REMOVED, removed),
            ],
            caller,
        )

    def _ensure_other_owner(self, organization_id: str, user_id: str) -> None:
        others = (
            self.db.query(MembershipModel)
            .filter(
                MembershipModel.organization_id == organization_id,
                MembershipModel.role == Role.OWNER,
                MembershipModel.user_id != user_id,
            )
            .count()
        )
        if others == 0:
            raise ConflictError("An organization must keep at least one owner")

    # -------------------------------------------------------------------------
    # Labels
    # -------------------------------------------------------------------------

    def create_label(self, caller: Caller, organization_id: str, data: LabelCreate) -> LabelModel:
        self._load_organization(caller, organization_id)
        self._require(caller, organization_id, Action.EDIT_PROJECT)

        label = LabelModel(
            id=generate_id(),
            organization_id=organization_id,
            name=data.name,
            color=data.color,
            created_at=utc_now(),
        )
        with self.transaction():
            self.db.add(label)
            self.activity.record(
                ActivityType.LABEL_CREATED,
                organization_id=organization_id,
                actor_id=caller.user_id,
                meta={"label_id": label.id, "name": label.name},
            )

        self._publish(
            [(organization_scope(organization_id), EventType.LABEL_CREATED, label.to_dict())],
            caller,
        )
        return label

    def list_labels(self, caller: Caller, organization_id: str) -> List[LabelModel]:
        self._load_organization(caller, organization_id)
        return (
            self.db.query(LabelModel)
            .filter(LabelModel.organization_id == organization_id)
            .order_by(LabelModel.name, LabelModel.id)
            .all()
        )
