"""
Tests for IdentityService -- account registration, provisioning and
lifecycle.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from branchbook_kernel.domain.edit_workflow import EditState
from branchbook_kernel.domain.roles import Role
from branchbook_kernel.exceptions import (
    AccessDeniedError,
    CapabilityRequiredError,
    EmailAlreadyRegisteredError,
    InvalidRoleError,
    UserNotFoundError,
    ValidationError,
)
from branchbook_kernel.models.branch import BranchPIC
from branchbook_kernel.models.user import User


class TestRegistration:

    def test_register_owner_normalizes_email(self, identity):
        owner = identity.register_owner("  Ann@Example.COM ", " Ann ")
        assert owner.email == "ann@example.com"
        assert owner.name == "Ann"
        assert owner.role == Role.OWNER
        assert owner.created_by_user_id is None

    def test_duplicate_email_case_insensitive(self, identity):
        identity.register_owner("ann@example.com", "Ann")
        with pytest.raises(EmailAlreadyRegisteredError):
            identity.register_owner("ANN@example.com", "Other Ann")

    def test_email_of_soft_deleted_user_stays_taken(self, identity, make_user, actor_of):
        master = make_user(Role.MASTER)
        owner = identity.register_owner("gone@example.com", "Gone")
        identity.soft_delete_user(actor_of(master), owner.id)
        with pytest.raises(EmailAlreadyRegisteredError):
            identity.register_owner("gone@example.com", "Again")

    def test_malformed_email(self, identity):
        with pytest.raises(ValidationError):
            identity.register_owner("not-an-email", "Ann")


class TestProvisioning:

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.CO_OWNER])
    def test_owner_provisions(self, identity, make_user, actor_of, role):
        owner = make_user(Role.OWNER)
        user = identity.provision_user(actor_of(owner), "new@example.com", "New", role)
        assert user.role == role
        assert user.created_by_user_id == owner.id

    def test_owner_cannot_provision_owner(self, identity, make_user, actor_of):
        owner = make_user(Role.OWNER)
        with pytest.raises(InvalidRoleError):
            identity.provision_user(actor_of(owner), "x@example.com", "X", Role.OWNER)

    def test_master_provisions_any_role(self, identity, make_user, actor_of):
        master = make_user(Role.MASTER)
        user = identity.provision_user(actor_of(master), "o@example.com", "O", "owner")
        assert user.role == Role.OWNER

    def test_unknown_role(self, identity, make_user, actor_of):
        with pytest.raises(InvalidRoleError):
            identity.provision_user(actor_of(make_user(Role.OWNER)), "x@example.com", "X", "root")

    def test_admin_cannot_provision(self, identity, make_user, actor_of):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        with pytest.raises(CapabilityRequiredError):
            identity.provision_user(actor_of(admin), "x@example.com", "X", Role.ADMIN)


class TestLookups:

    def test_find_by_email_ignores_case(self, identity, make_user):
        user = make_user(Role.OWNER, email="mixed@example.com")
        assert identity.find_user_by_email("MIXED@example.com").id == user.id

    def test_get_user_missing(self, identity):
        with pytest.raises(UserNotFoundError):
            identity.get_user(uuid4())

    def test_admins_for_owner_include_delegates(self, identity, make_user, make_team, make_branch):
        owner, partner = make_user(Role.OWNER), make_user(Role.OWNER)
        mine = make_user(Role.ADMIN, name="Mine", created_by=owner)
        theirs = make_user(Role.ADMIN, name="Theirs", created_by=partner)
        hidden = make_user(Role.ADMIN, name="Hidden", created_by=partner)
        team = make_team(partner, members=[owner])
        make_branch(partner, team=team, delegates=[theirs])
        make_branch(partner, delegates=[hidden])
        admins = identity.list_admins_for_owner(owner.id)
        assert [a.id for a in admins] == [mine.id, theirs.id]


class TestLifecycle:

    def test_creator_soft_deletes_and_restores(self, identity, make_user, actor_of):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        identity.soft_delete_user(actor_of(owner), admin.id)
        assert identity.find_user_by_id(admin.id) is None
        restored = identity.restore_user(actor_of(owner), admin.id)
        assert not restored.is_deleted

    def test_other_owner_cannot_delete(self, identity, make_user, actor_of):
        owner, stranger = make_user(Role.OWNER), make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        with pytest.raises(AccessDeniedError):
            identity.soft_delete_user(actor_of(stranger), admin.id)

    def test_restore_live_user(self, identity, make_user, actor_of):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        with pytest.raises(UserNotFoundError):
            identity.restore_user(actor_of(owner), admin.id)

    def test_purge_requires_master(self, identity, make_user, actor_of):
        owner = make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        with pytest.raises(CapabilityRequiredError):
            identity.purge_user(actor_of(owner), admin.id)

    def test_purge_refuses_branch_owner(self, identity, make_user, make_branch, actor_of):
        master, owner = make_user(Role.MASTER), make_user(Role.OWNER)
        make_branch(owner)
        with pytest.raises(ValidationError):
            identity.purge_user(actor_of(master), owner.id)

    def test_purge_resets_open_requests_and_delegations(
        self, session, identity, make_user, make_branch, make_transaction, actor_of,
    ):
        master, owner = make_user(Role.MASTER), make_user(Role.OWNER)
        admin = make_user(Role.ADMIN, created_by=owner)
        branch = make_branch(owner, delegates=[admin])
        txn = make_transaction(
            branch, owner, state=EditState.PENDING, requested_by=admin, reason="typo",
        )

        identity.purge_user(actor_of(master), admin.id)

        session.refresh(txn)
        assert txn.edit_accepted == int(EditState.DEFAULT)
        assert txn.edit_requested_by is None
        assert txn.edit_reason is None
        assert session.execute(select(BranchPIC).where(BranchPIC.user_id == admin.id)).first() is None
        assert session.execute(select(User).where(User.id == admin.id)).first() is None
