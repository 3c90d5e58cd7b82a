"""
Tests for TeamService -- the owner team graph.

Covers:
- user_has_team_access(): primary owner, active member, removed member,
  missing ids
- team_ids_for_user() / find_teams_for_user() / list_teams()
- create_team(), add_member() (mirroring and reactivation), remove_member()
- rename_team() / delete_team() primary-owner guard, branch detachment
"""

from uuid import uuid4

import pytest
from sqlalchemy import delete

from branchbook_kernel.domain.roles import MembershipStatus, Role, TeamRole
from branchbook_kernel.exceptions import (
    AccessDeniedError,
    CapabilityRequiredError,
    InvalidRoleError,
    PrimaryOwnerRemovalError,
    TeamNotFoundError,
    TeamOwnershipRequiredError,
    UserNotFoundError,
    ValidationError,
)
from branchbook_kernel.models.team import OwnerTeamMember


class TestTeamAccess:
    """user_has_team_access() and team membership queries."""

    def test_primary_owner_has_access_without_membership_row(self, session, make_user, make_team, teams):
        owner = make_user(Role.OWNER)
        team = make_team(owner)
        session.execute(delete(OwnerTeamMember).where(OwnerTeamMember.team_id == team.id))
        session.flush()
        assert teams.user_has_team_access(owner.id, team.id)

    def test_active_member_has_access(self, make_user, make_team, teams):
        owner, partner = make_user(Role.OWNER), make_user(Role.OWNER)
        team = make_team(owner, members=[partner])
        assert teams.user_has_team_access(partner.id, team.id)

    def test_outsider_has_no_access(self, make_user, make_team, teams):
        owner, outsider = make_user(Role.OWNER), make_user(Role.OWNER)
        team = make_team(owner)
        assert not teams.user_has_team_access(outsider.id, team.id)

    def test_missing_ids_are_denied(self, make_user, make_team, teams):
        owner = make_user(Role.OWNER)
        team = make_team(owner)
        assert not teams.user_has_team_access(None, team.id)
        assert not teams.user_has_team_access(owner.id, None)
        assert not teams.user_has_team_access(owner.id, uuid4())

    def test_removed_member_loses_access(self, make_user, make_team, teams, actor_of):
        owner, partner = make_user(Role.OWNER), make_user(Role.OWNER)
        team = make_team(owner, members=[partner])
        teams.remove_member(actor_of(owner), team.id, partner.id)
        assert not teams.user_has_team_access(partner.id, team.id)
        assert team.id not in teams.team_ids_for_user(partner.id)

    def test_team_ids_cover_owned_and_joined(self, make_user, make_team, teams):
        a, b = make_user(Role.OWNER), make_user(Role.OWNER)
        own = make_team(a, name="Mine")
        joined = make_team(b, name="Theirs", members=[a])
        assert teams.team_ids_for_user(a.id) == {own.id, joined.id}
        assert teams.team_ids_for_user(None) == set()

    def test_find_teams_ordered_by_creation(self, make_user, make_team, teams):
        a, b = make_user(Role.OWNER), make_user(Role.OWNER)
        first = make_team(a, name="Zeta")
        second = make_team(b, name="Alpha", members=[a])
        assert [t.id for t in teams.find_teams_for_user(a.id)] == [first.id, second.id]

    def test_co_owner_lists_creator_teams(self, make_user, make_team, teams, actor_of):
        owner = make_user(Role.OWNER)
        co = make_user(Role.CO_OWNER, created_by=owner)
        team = make_team(owner)
        assert [t.id for t in teams.list_teams(actor_of(co))] == [team.id]

    def test_members_ordered_by_team_role(self, make_user, make_team, teams):
        owner = make_user(Role.OWNER, name="Zed")
        co = make_user(Role.CO_OWNER, name="Amy", created_by=owner)
        partner = make_user(Role.OWNER, name="Bob")
        team = make_team(owner, members=[co, partner])
        members = teams.get_members(team.id)
        assert [m.role for m in members] == [TeamRole.OWNER, TeamRole.OWNER, TeamRole.CO_OWNER]
        assert members[-1].user_id == co.id

    def test_owner_member_ids_excludes_co_owners(self, make_user, make_team, teams):
        owner = make_user(Role.OWNER)
        co = make_user(Role.CO_OWNER, created_by=owner)
        partner = make_user(Role.OWNER)
        team = make_team(owner, members=[co, partner])
        assert set(teams.owner_member_ids(team.id)) == {owner.id, partner.id}


class TestTeamWrites:
    """create_team(), add_member(), remove_member(), rename/delete."""

    def test_create_team_enrolls_creator(self, make_user, teams, actor_of):
        owner = make_user(Role.OWNER)
        team = teams.create_team(actor_of(owner), "  North  ")
        assert team.name == "North"
        assert team.primary_owner_id == owner.id
        members = teams.get_members(team.id)
        assert [(m.user_id, m.role, m.status) for m in members] == [
            (owner.id, TeamRole.OWNER, MembershipStatus.ACTIVE),
        ]

    def test_only_owners_create_teams(self, make_user, teams, actor_of):
        owner = make_user(Role.OWNER)
        co = make_user(Role.CO_OWNER, created_by=owner)
        with pytest.raises(CapabilityRequiredError):
            teams.create_team(actor_of(co), "Mine")

    def test_blank_name_rejected(self, make_user, teams, actor_of):
        with pytest.raises(ValidationError):
            teams.create_team(actor_of(make_user(Role.OWNER)), "   ")

    def test_add_member_mirrors_user_role(self, make_user, make_team, teams, actor_of):
        owner = make_user(Role.OWNER)
        co = make_user(Role.CO_OWNER, created_by=owner)
        team = make_team(owner)
        member = teams.add_member(actor_of(owner), team.id, co.id)
        assert member.role == TeamRole.CO_OWNER
        assert member.invited_by == owner.id
        assert teams.user_has_team_access(co.id, team.id)

    def test_add_member_rejects_admin(self, make_user, make_team, teams, actor_of):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        team = make_team(owner)
        with pytest.raises(InvalidRoleError):
            teams.add_member(actor_of(owner), team.id, admin.id)

    def test_co_owner_cannot_be_promoted_to_owner(self, make_user, make_team, teams, actor_of):
        owner = make_user(Role.OWNER)
        co = make_user(Role.CO_OWNER, created_by=owner)
        team = make_team(owner)
        with pytest.raises(InvalidRoleError):
            teams.add_member(actor_of(owner), team.id, co.id, role=TeamRole.OWNER)
        assert teams.owner_member_ids(team.id) == [owner.id]
        assert not teams.user_has_team_access(co.id, team.id)

    def test_role_may_be_lowered_to_member(self, make_user, make_team, teams, actor_of):
        owner, partner = make_user(Role.OWNER), make_user(Role.OWNER)
        team = make_team(owner)
        member = teams.add_member(actor_of(owner), team.id, partner.id, role="member")
        assert member.role == TeamRole.MEMBER
        assert teams.owner_member_ids(team.id) == [owner.id]

    def test_add_unknown_user(self, make_user, make_team, teams, actor_of):
        owner = make_user(Role.OWNER)
        team = make_team(owner)
        with pytest.raises(UserNotFoundError):
            teams.add_member(actor_of(owner), team.id, uuid4())

    def test_readd_reactivates_existing_row(self, make_user, make_team, teams, actor_of):
        owner, partner = make_user(Role.OWNER), make_user(Role.OWNER)
        team = make_team(owner, members=[partner])
        teams.remove_member(actor_of(owner), team.id, partner.id)
        teams.add_member(actor_of(owner), team.id, partner.id)
        members = [m for m in teams.get_members(team.id) if m.user_id == partner.id]
        assert len(members) == 1
        assert members[0].status == MembershipStatus.ACTIVE

    def test_outsider_cannot_manage(self, make_user, make_team, teams, actor_of):
        owner, outsider, target = (make_user(Role.OWNER) for _ in range(3))
        team = make_team(owner)
        with pytest.raises(AccessDeniedError):
            teams.add_member(actor_of(outsider), team.id, target.id)

    def test_co_owner_manages_creator_team(self, make_user, make_team, teams, actor_of):
        owner, partner = make_user(Role.OWNER), make_user(Role.OWNER)
        co = make_user(Role.CO_OWNER, created_by=owner)
        team = make_team(owner, members=[co])
        teams.add_member(actor_of(co), team.id, partner.id)
        assert teams.user_has_team_access(partner.id, team.id)

    def test_primary_owner_cannot_be_removed(self, make_user, make_team, teams, actor_of):
        owner = make_user(Role.OWNER)
        team = make_team(owner)
        with pytest.raises(PrimaryOwnerRemovalError):
            teams.remove_member(actor_of(owner), team.id, owner.id)

    def test_remove_non_member(self, make_user, make_team, teams, actor_of):
        owner, other = make_user(Role.OWNER), make_user(Role.OWNER)
        team = make_team(owner)
        with pytest.raises(ValidationError):
            teams.remove_member(actor_of(owner), team.id, other.id)

    def test_rename_requires_primary_owner(self, make_user, make_team, teams, actor_of):
        owner, partner = make_user(Role.OWNER), make_user(Role.OWNER)
        team = make_team(owner, members=[partner])
        with pytest.raises(TeamOwnershipRequiredError):
            teams.rename_team(actor_of(partner), team.id, "Hijacked")
        assert teams.rename_team(actor_of(owner), team.id, "South").name == "South"

    def test_delete_team_detaches_branches(self, session, make_user, make_team, make_branch, teams, actor_of):
        owner = make_user(Role.OWNER)
        team = make_team(owner)
        branch = make_branch(owner, team=team)
        teams.delete_team(actor_of(owner), team.id)
        session.refresh(branch)
        assert branch.team_id is None
        with pytest.raises(TeamNotFoundError):
            teams.get_team(team.id)
