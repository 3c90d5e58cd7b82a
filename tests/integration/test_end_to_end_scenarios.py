"""
End-to-end scenarios driven only through the public services.

Covers:
- The full edit cycle: request, approve, gated update, request again
- The free-plan branch ceiling for an owner with no subscription
- A shared team estate: co-owner access, delegate-scoped admin, team
  owner notifications, plan upgrade lifting the ceiling
"""

from decimal import Decimal

import pytest

from branchbook_kernel.domain.dtos import Actor, BillingPeriod
from branchbook_kernel.domain.edit_workflow import EditState
from branchbook_kernel.domain.roles import Role
from branchbook_kernel.exceptions import (
    AccessDeniedError,
    BranchLimitExceededError,
    EditNotApprovedError,
)


class TestEditCycle:

    def test_request_approve_update_request_again(
        self, identity, registry, transactions, edits, notifications,
    ):
        owner_info = identity.register_owner("olive@example.com", "Olive")
        owner = Actor.from_user(owner_info)
        admin_info = identity.provision_user(owner, "adam@example.com", "Adam", Role.ADMIN)
        admin = Actor.from_user(admin_info)

        branch = registry.create_branch(owner, "Harbour", delegate_ids=[admin.id])
        txn = transactions.create_transaction(admin, branch.id, "expense", "Supplies", "120.00")

        requested = edits.request_edit(admin, txn.id, "wrong amount")
        assert (requested.edit_accepted, requested.edit_requested_by, requested.edit_reason) == (
            EditState.PENDING, admin.id, "wrong amount",
        )
        assert notifications.sent[-1]["user_ids"] == [owner.id]

        approved = edits.approve_edit(owner, txn.id)
        assert (approved.edit_accepted, approved.edit_requested_by, approved.edit_reason) == (
            EditState.APPROVED, admin.id, "wrong amount",
        )
        assert notifications.sent[-1]["user_ids"] == [admin.id]

        updated = transactions.update_transaction(admin, txn.id, amount="102.00")
        assert updated.amount == Decimal("102.00")
        assert (updated.edit_accepted, updated.edit_requested_by, updated.edit_reason) == (
            EditState.DEFAULT, None, None,
        )

        with pytest.raises(EditNotApprovedError):
            transactions.update_transaction(admin, txn.id, amount="1.00")

        again = edits.request_edit(admin, txn.id, "category too")
        assert (again.edit_accepted, again.edit_requested_by, again.edit_reason) == (
            EditState.PENDING, admin.id, "category too",
        )
        assert [r.reason for r in edits.get_edit_requests(owner, branch_id=branch.id)] == ["category too"]


class TestFreePlanCeiling:

    def test_owner_with_one_branch_is_at_limit(self, identity, registry, gate):
        owner = Actor.from_user(identity.register_owner("solo@example.com", "Solo"))
        registry.create_branch(owner, "Only")

        check = gate.can_create_branch(owner.id, Role.OWNER)
        assert not check.allowed
        assert (check.current_branches, check.max_branches) == (1, 1)

        with pytest.raises(BranchLimitExceededError):
            registry.create_branch(owner, "Second")


class TestSharedEstate:

    def test_team_of_owners(self, identity, teams, registry, transactions, edits, gate, notifications):
        olive = Actor.from_user(identity.register_owner("olive@example.com", "Olive"))
        peter = Actor.from_user(identity.register_owner("peter@example.com", "Peter"))
        cora = Actor.from_user(identity.provision_user(olive, "cora@example.com", "Cora", Role.CO_OWNER))
        adam = Actor.from_user(identity.provision_user(olive, "adam@example.com", "Adam", Role.ADMIN))

        team = teams.create_team(olive, "Olive & Peter")
        teams.add_member(olive, team.id, peter.id)

        shared = registry.create_branch(olive, "Shared", delegate_ids=[adam.id])
        assert shared.team_id == team.id

        # Peter reaches the team branch, Cora reaches it through Olive
        for actor in (peter, cora):
            assert shared.id in {b.id for b in registry.list_branches(actor)}
        assert [b.id for b in registry.list_branches(adam)] == [shared.id]

        # The shared branch counts against Olive's free plan
        with pytest.raises(BranchLimitExceededError):
            registry.create_branch(cora, "Cora's own")

        plan = gate.create_plan("Pro", max_branches=3, price_monthly=Decimal("19.00"))
        subscription = gate.start_subscription(olive.id, plan.id, BillingPeriod.MONTHLY)
        gate.activate_subscription(subscription.id)
        second = registry.create_branch(cora, "Cora's own")
        assert second.owner_id == cora.id

        with pytest.raises(AccessDeniedError):
            transactions.create_transaction(adam, second.id, "income", "Sales", 10)

        txn = transactions.create_transaction(adam, shared.id, "income", "Sales", "55.00")
        edits.request_edit(adam, txn.id, "typo")
        assert set(notifications.sent[-1]["user_ids"]) == {olive.id, peter.id}

        edits.reject_edit(peter, txn.id)
        assert edits.get_edit_requests(adam) == []
        rejected = edits.get_edit_requests(adam, status="rejected")
        assert [(r.transaction_id, r.state) for r in rejected] == [(txn.id, EditState.REJECTED)]
