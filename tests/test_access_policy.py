"""Unit tests for the access control table."""

import pytest

from workboard.errors import AccessError
from workboard.policy import PERMISSIONS, ROLE_RANK, Action, Role, authorize, can_grant_role, require


class TestPermissionTable:
    """The (role, action) truth table."""

    @pytest.mark.parametrize("role", list(Role))
    def test_every_role_can_view(self, role):
        assert authorize(role, Action.VIEW_TASK) is True

    @pytest.mark.parametrize("action", [Action.CREATE_TASK, Action.MOVE_TASK])
    def test_viewer_cannot_contribute(self, action):
        assert authorize(Role.VIEWER, action) is False
        assert authorize(Role.MEMBER, action) is True

    @pytest.mark.parametrize("action", [Action.DELETE_TASK, Action.EDIT_PROJECT])
    def test_manager_actions(self, action):
        assert authorize(Role.MEMBER, action) is False
        assert authorize(Role.MANAGER, action) is True
        assert authorize(Role.ADMIN, action) is True
        assert authorize(Role.OWNER, action) is True

    @pytest.mark.parametrize(
        "action", [Action.INVITE_USER, Action.MANAGE_ROLES, Action.MANAGE_ORG]
    )
    def test_admin_actions(self, action):
        assert authorize(Role.MANAGER, action) is False
        assert authorize(Role.ADMIN, action) is True
        assert authorize(Role.OWNER, action) is True

    def test_permissions_are_monotonic_in_rank(self):
        """A role never loses a permission held by a less privileged role."""
        for action, allowed in PERMISSIONS.items():
            for role in allowed:
                stronger = [r for r in Role if ROLE_RANK[r] > ROLE_RANK[role]]
                assert all(r in allowed for r in stronger), action

    def test_accepts_string_values(self):
        assert authorize("MANAGER", "delete_task") is True
        assert authorize("VIEWER", "create_task") is False


class TestUnknownInputsDeny:
    def test_unknown_role(self):
        assert authorize("SUPERUSER", Action.VIEW_TASK) is False

    def test_unknown_action(self):
        assert authorize(Role.OWNER, "launch_rockets") is False

    def test_none_role(self):
        assert authorize(None, Action.VIEW_TASK) is False


class TestRequire:
    def test_passes_silently_when_allowed(self):
        require(Role.ADMIN, Action.MANAGE_ORG)

    def test_raises_access_error_when_denied(self):
        with pytest.raises(AccessError) as exc_info:
            require(Role.MEMBER, Action.DELETE_TASK)
        assert exc_info.value.code == "access_denied"
        assert "delete_task" in exc_info.value.message


class TestCanGrantRole:
    def test_only_owner_grants_owner(self):
        assert can_grant_role(Role.OWNER, Role.OWNER) is True
        assert can_grant_role(Role.ADMIN, Role.OWNER) is False

    def test_admin_grants_other_roles(self):
        for target in (Role.VIEWER, Role.MEMBER, Role.MANAGER, Role.ADMIN):
            assert can_grant_role(Role.ADMIN, target) is True

    def test_manager_cannot_grant(self):
        assert can_grant_role(Role.MANAGER, Role.VIEWER) is False

    def test_unknown_target_denies(self):
        assert can_grant_role(Role.OWNER, "EMPEROR") is False
