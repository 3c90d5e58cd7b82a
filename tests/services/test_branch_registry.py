"""
Tests for BranchRegistry -- branch lifecycle and delegate (PIC) management.

Covers:
- create_branch(): gate enforcement, default team, explicit team,
  delegate validation, audit trail
- update / soft delete / restore / purge
- assign_delegate(), remove_delegate(), set_delegates() atomicity
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from branchbook_kernel.domain.roles import Role
from branchbook_kernel.exceptions import (
    AccessDeniedError,
    BranchLimitExceededError,
    BranchNotFoundError,
    CapabilityRequiredError,
    InvalidRoleError,
    ValidationError,
)
from branchbook_kernel.models.activity_log import ActivityLog
from branchbook_kernel.models.transaction import Transaction


class TestCreateBranch:
    """create_branch()."""

    def test_first_branch_on_free_plan(self, registry, make_user, actor_of, captured_logs):
        owner = make_user(Role.OWNER)
        branch = registry.create_branch(actor_of(owner), " Main St ", address="1 Main St")
        assert branch.name == "Main St"
        assert branch.owner_id == owner.id
        assert branch.team_id is None
        assert branch.status_active
        assert branch.pics == ()
        assert any(r["message"] == "branch_created" for r in captured_logs())

    def test_second_branch_blocked(self, registry, make_user, actor_of):
        owner = make_user(Role.OWNER)
        registry.create_branch(actor_of(owner), "One")
        with pytest.raises(BranchLimitExceededError):
            registry.create_branch(actor_of(owner), "Two")
        assert len(registry.list_branches(actor_of(owner))) == 1

    def test_admin_cannot_create(self, registry, make_user, actor_of):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        with pytest.raises(CapabilityRequiredError):
            registry.create_branch(actor_of(admin), "Nope")

    def test_defaults_to_first_team(self, registry, make_user, make_team, actor_of):
        owner = make_user(Role.OWNER)
        team = make_team(owner)
        assert registry.create_branch(actor_of(owner), "Teamed").team_id == team.id

    def test_co_owner_defaults_to_creator_team(self, registry, make_user, make_team, actor_of):
        owner = make_user(Role.OWNER)
        co = make_user(Role.CO_OWNER, created_by=owner)
        team = make_team(owner)
        branch = registry.create_branch(actor_of(co), "By co-owner")
        assert branch.owner_id == co.id
        assert branch.team_id == team.id

    def test_unreachable_team_denied(self, registry, make_user, make_team, actor_of):
        owner, stranger = make_user(Role.OWNER), make_user(Role.OWNER)
        team = make_team(stranger)
        with pytest.raises(AccessDeniedError):
            registry.create_branch(actor_of(owner), "Sneaky", team_id=team.id)

    def test_delegates_deduplicated(self, registry, make_user, actor_of):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        branch = registry.create_branch(actor_of(owner), "Main", delegate_ids=[admin.id, admin.id])
        assert [p.user_id for p in branch.pics] == [admin.id]

    def test_non_admin_delegate_rejected(self, registry, make_user, actor_of, session):
        owner = make_user(Role.OWNER)
        co = make_user(Role.CO_OWNER, created_by=owner)
        with pytest.raises(InvalidRoleError) as exc_info:
            registry.create_branch(actor_of(owner), "Main", delegate_ids=[co.id])
        assert exc_info.value.user_id == str(co.id)
        assert exc_info.value.actual_role == "co-owner"
        assert registry.list_branches(actor_of(owner)) == []

    def test_activity_recorded(self, registry, make_user, actor_of, session):
        owner = make_user(Role.OWNER, name="Olive")
        branch = registry.create_branch(actor_of(owner), "Main")
        log = session.execute(
            select(ActivityLog).where(ActivityLog.entity_id == str(branch.id))
        ).scalar_one()
        assert log.action == "create"
        assert log.user_name == "Olive"
        assert log.branch_name == "Main"
        assert log.new_values["name"] == "Main"


class TestBranchLifecycle:

    def test_update_fields(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        branch = make_branch(owner)
        updated = registry.update_branch(actor_of(owner), branch.id, name="Renamed", phone="555")
        assert (updated.name, updated.phone) == ("Renamed", "555")

    def test_update_unknown_field(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        branch = make_branch(owner)
        with pytest.raises(ValidationError):
            registry.update_branch(actor_of(owner), branch.id, owner_id=uuid4())

    def test_delegate_admin_cannot_update(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        branch = make_branch(owner, delegates=[admin])
        with pytest.raises(CapabilityRequiredError):
            registry.update_branch(actor_of(admin), branch.id, name="Mine now")

    def test_soft_delete_hides_branch(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        branch = make_branch(owner)
        registry.soft_delete_branch(actor_of(owner), branch.id)
        with pytest.raises(BranchNotFoundError):
            registry.get_branch(actor_of(owner), branch.id)
        assert registry.list_branches(actor_of(owner)) == []

    def test_restore_rechecks_limit(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        old = make_branch(owner)
        registry.soft_delete_branch(actor_of(owner), old.id)
        make_branch(owner)
        with pytest.raises(BranchLimitExceededError):
            registry.restore_branch(actor_of(owner), old.id)

    def test_restore(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        branch = make_branch(owner, deleted=True)
        restored = registry.restore_branch(actor_of(owner), branch.id)
        assert not restored.is_deleted

    def test_restore_by_stranger(self, registry, make_user, make_branch, actor_of):
        owner, stranger = make_user(Role.OWNER), make_user(Role.OWNER)
        branch = make_branch(owner, deleted=True)
        with pytest.raises(AccessDeniedError):
            registry.restore_branch(actor_of(stranger), branch.id)

    def test_purge_removes_transactions(
        self, session, registry, make_user, make_branch, make_transaction, actor_of,
    ):
        master, owner = make_user(Role.MASTER), make_user(Role.OWNER)
        branch = make_branch(owner)
        make_transaction(branch, owner)
        with pytest.raises(CapabilityRequiredError):
            registry.purge_branch(actor_of(owner), branch.id)
        registry.purge_branch(actor_of(master), branch.id)
        assert session.execute(
            select(Transaction).where(Transaction.branch_id == branch.id)
        ).first() is None


class TestDelegates:
    """assign_delegate(), remove_delegate(), set_delegates()."""

    def test_assign_is_idempotent(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        branch = make_branch(owner)
        registry.assign_delegate(actor_of(owner), branch.id, admin.id)
        pics = registry.assign_delegate(actor_of(owner), branch.id, admin.id)
        assert [p.user_id for p in pics] == [admin.id]

    def test_remove_one(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        a1 = make_user(Role.ADMIN, name="A1", created_by=owner)
        a2 = make_user(Role.ADMIN, name="A2", created_by=owner)
        branch = make_branch(owner, delegates=[a1, a2])
        pics = registry.remove_delegate(actor_of(owner), branch.id, a1.id)
        assert [p.user_id for p in pics] == [a2.id]

    def test_remove_all(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        a1 = make_user(Role.ADMIN, created_by=owner)
        a2 = make_user(Role.ADMIN, created_by=owner)
        branch = make_branch(owner, delegates=[a1, a2])
        assert registry.remove_delegate(actor_of(owner), branch.id) == ()

    def test_set_replaces(self, registry, make_user, make_branch, actor_of, resolver):
        owner = make_user(Role.OWNER)
        old = make_user(Role.ADMIN, name="Old", created_by=owner)
        new1 = make_user(Role.ADMIN, name="New 1", created_by=owner)
        new2 = make_user(Role.ADMIN, name="New 2", created_by=owner)
        branch = make_branch(owner, delegates=[old])
        pics = registry.set_delegates(actor_of(owner), branch.id, [new2.id, new1.id, new2.id])
        assert [p.user_id for p in pics] == [new1.id, new2.id]
        assert not resolver.has_access(old.id, Role.ADMIN, branch.id)
        assert resolver.has_access(new1.id, Role.ADMIN, branch.id)

    def test_set_is_all_or_nothing(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        keep = make_user(Role.ADMIN, created_by=owner)
        good = make_user(Role.ADMIN, created_by=owner)
        bad = make_user(Role.CO_OWNER, created_by=owner)
        branch = make_branch(owner, delegates=[keep])
        with pytest.raises(InvalidRoleError) as exc_info:
            registry.set_delegates(actor_of(owner), branch.id, [good.id, bad.id])
        assert exc_info.value.user_id == str(bad.id)
        assert [p.user_id for p in registry.get_delegates(branch.id)] == [keep.id]

    def test_set_rejects_deleted_admin(self, registry, make_user, make_branch, actor_of, deterministic_clock):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        admin.mark_deleted(deterministic_clock.now())
        branch = make_branch(owner)
        with pytest.raises(InvalidRoleError):
            registry.set_delegates(actor_of(owner), branch.id, [admin.id])

    def test_set_empty_clears(self, registry, make_user, make_branch, actor_of):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        branch = make_branch(owner, delegates=[admin])
        assert registry.set_delegates(actor_of(owner), branch.id, []) == ()

    def test_stranger_cannot_manage(self, registry, make_user, make_branch, actor_of):
        owner, stranger = make_user(Role.OWNER), make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        branch = make_branch(owner)
        with pytest.raises(AccessDeniedError):
            registry.set_delegates(actor_of(stranger), branch.id, [admin.id])
