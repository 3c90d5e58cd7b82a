"""
Tests for the role model: the capability table and its helpers.
"""

import pytest

from branchbook_kernel.domain.roles import (
    PROVISIONABLE_BY_OWNERS,
    ROLE_CAPABILITIES,
    Capability,
    Role,
    TeamRole,
    has_capability,
    require_capability,
    team_role_for,
)
from branchbook_kernel.exceptions import CapabilityRequiredError


class TestCapabilityTable:
    """Who may do what."""

    def test_every_role_has_an_entry(self):
        assert set(ROLE_CAPABILITIES) == set(Role)

    @pytest.mark.parametrize("role", [Role.OWNER, Role.CO_OWNER])
    def test_owners_create_branches_and_decide_edits(self, role):
        assert has_capability(role, Capability.CREATE_BRANCH)
        assert has_capability(role, Capability.DECIDE_EDIT)
        assert has_capability(role, Capability.BYPASS_EDIT_GATE)
        assert not has_capability(role, Capability.REQUEST_EDIT)

    def test_only_owners_create_teams(self):
        holders = {r for r in Role if has_capability(r, Capability.CREATE_TEAM)}
        assert holders == {Role.OWNER}

    def test_admin_only_requests_edits(self):
        assert ROLE_CAPABILITIES[Role.ADMIN] == frozenset({Capability.REQUEST_EDIT})

    def test_master_sees_everything_but_creates_no_branch(self):
        assert has_capability(Role.MASTER, Capability.VIEW_ALL_BRANCHES)
        assert has_capability(Role.MASTER, Capability.PURGE_RECORDS)
        assert not has_capability(Role.MASTER, Capability.CREATE_BRANCH)
        assert not has_capability(Role.MASTER, Capability.DECIDE_EDIT)

    def test_string_roles_accepted(self):
        assert has_capability("co-owner", Capability.MANAGE_DELEGATES)

    def test_unknown_role_carries_nothing(self):
        assert not any(has_capability("superuser", cap) for cap in Capability)

    def test_owners_provision_admins_and_co_owners_only(self):
        assert PROVISIONABLE_BY_OWNERS == frozenset({Role.ADMIN, Role.CO_OWNER})


class TestRequireCapability:

    def test_passes_silently(self):
        require_capability(Role.OWNER, Capability.CREATE_BRANCH)

    def test_raises_with_role_and_capability(self):
        with pytest.raises(CapabilityRequiredError) as exc_info:
            require_capability(Role.ADMIN, Capability.CREATE_BRANCH)
        assert exc_info.value.role == "admin"
        assert exc_info.value.capability == "create_branch"
        assert exc_info.value.code == "CAPABILITY_REQUIRED"

    def test_unknown_role_string(self):
        with pytest.raises(CapabilityRequiredError):
            require_capability("ghost", Capability.CREATE_BRANCH)


class TestTeamRoleFor:

    def test_mirrors_owner_roles(self):
        assert team_role_for(Role.OWNER) == TeamRole.OWNER
        assert team_role_for(Role.CO_OWNER) == TeamRole.CO_OWNER

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.MASTER])
    def test_other_roles_not_enrollable(self, role):
        assert team_role_for(role) is None
