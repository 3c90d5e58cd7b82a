"""
IdentityService -- user accounts and provisioning.

Responsibility:
    Self-registration of owners, provisioning of admin/co-owner accounts by
    owners (any role by a master), lookups that treat soft-deleted users as
    absent, soft delete / restore / purge, and the "admins of this owner"
    listing.

Architecture position:
    Kernel > Services.  Password hashing and token issuance live outside
    the kernel; ``credential_ref`` is stored opaquely.

Invariants enforced:
    - Emails are unique across live and soft-deleted users.
    - Non-master actors may provision only admin and co-owner accounts; the
      provisioning actor is recorded as ``created_by_user_id``.
    - Purge is reserved for PURGE_RECORDS roles and refuses users that
      still own branches or teams or authored transactions.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from branchbook_kernel.domain.clock import Clock
from branchbook_kernel.domain.dtos import Actor, UserInfo
from branchbook_kernel.domain.edit_workflow import EditState
from branchbook_kernel.domain.roles import (
    PROVISIONABLE_BY_OWNERS,
    Capability,
    Role,
    require_capability,
)
from branchbook_kernel.exceptions import (
    AccessDeniedError,
    EmailAlreadyRegisteredError,
    InvalidRoleError,
    UserNotFoundError,
    ValidationError,
)
from branchbook_kernel.logging_config import get_logger
from branchbook_kernel.models.branch import Branch, BranchPIC
from branchbook_kernel.models.team import OwnerTeam, OwnerTeamMember
from branchbook_kernel.models.transaction import Transaction
from branchbook_kernel.models.user import User
from branchbook_kernel.selectors.branch_selector import BranchSelector
from branchbook_kernel.selectors.user_selector import UserSelector
from branchbook_kernel.services.activity_recorder import ActivityRecorder, ActivitySink
from branchbook_kernel.services.base import BaseService
from branchbook_kernel.services.team_service import TeamService

logger = get_logger("services.identity")


def _normalize_email(email: str | None) -> str:
    cleaned = (email or "").strip().lower()
    local, _, domain = cleaned.partition("@")
    if not local or not domain or "@" in domain:
        raise ValidationError(f"Invalid email address: {email!r}", field="email")
    return cleaned


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Name is required", field="name")
    return cleaned


class IdentityService(BaseService):
    """User lifecycle."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        teams: TeamService | None = None,
        activity: ActivitySink | None = None,
    ):
        super().__init__(session, clock)
        self._users = UserSelector(session)
        self._branches = BranchSelector(session)
        self._activity = activity or ActivityRecorder(session, clock=self._clock)
        self._teams = teams or TeamService(session, self._clock, activity=self._activity)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _insert_user(
        self,
        email: str,
        name: str,
        role: Role,
        credential_ref: str | None,
        created_by: UUID | None,
    ) -> UserInfo:
        email = _normalize_email(email)
        name = _clean_name(name)
        if self._users.email_taken(email):
            raise EmailAlreadyRegisteredError(email)

        now = self._clock.now()
        user = User(
            email=email,
            name=name,
            role=role.value,
            credential_ref=credential_ref,
            created_by_user_id=created_by,
            created_at=now,
            updated_at=now,
        )
        self.session.add(user)
        self.session.flush()
        return UserInfo.from_model(user)

    def register_owner(
        self,
        email: str,
        name: str,
        credential_ref: str | None = None,
    ) -> UserInfo:
        """Self-registration: always an owner with no creator."""
        user = self._insert_user(email, name, Role.OWNER, credential_ref, None)
        logger.info("owner_registered", extra={"user_id": str(user.id)})
        self._activity.record_system(
            "info", "user", "owner_registered", context={"email": user.email}, user_id=user.id,
        )
        return user

    def provision_user(
        self,
        actor: Actor,
        email: str,
        name: str,
        role: Role | str,
        credential_ref: str | None = None,
    ) -> UserInfo:
        require_capability(actor.role, Capability.PROVISION_USERS)
        try:
            target_role = Role(role)
        except ValueError:
            raise InvalidRoleError(str(email), "a known role", str(role)) from None
        if actor.role != Role.MASTER and target_role not in PROVISIONABLE_BY_OWNERS:
            raise InvalidRoleError(
                str(email), "admin or co-owner", target_role.value,
            )

        user = self._insert_user(email, name, target_role, credential_ref, actor.id)
        logger.info(
            "user_provisioned",
            extra={
                "user_id": str(user.id),
                "role": target_role.value,
                "created_by": str(actor.id),
            },
        )
        self._activity.record_system(
            "info", "user", "user_provisioned",
            context={"target_user_id": user.id, "role": target_role.value},
            user_id=actor.id,
        )
        return user

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_user_by_id(self, user_id: UUID) -> UserInfo | None:
        return self._users.find_by_id(user_id)

    def get_user(self, user_id: UUID) -> UserInfo:
        user = self._users.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user

    def find_user_by_email(self, email: str) -> UserInfo | None:
        return self._users.find_by_email(email)

    def list_admins_for_owner(self, owner_id: UUID) -> list[UserInfo]:
        """
        Admins the owner created, plus admins delegated to any branch the
        owner owns or reaches through a team.
        """
        created = {u.id for u in self._users.list_created_by(owner_id, Role.ADMIN)}
        branch_ids = self._branches.owned_ids([owner_id]) | self._branches.team_ids_to_branch_ids(
            self._teams.team_ids_for_user(owner_id)
        )
        delegated: set[UUID] = set()
        if branch_ids:
            delegated = set(self.session.execute(
                select(BranchPIC.user_id).where(BranchPIC.branch_id.in_(branch_ids))
            ).scalars())
        return self._users.list_by_ids(created | delegated, Role.ADMIN)

    # ------------------------------------------------------------------
    # Soft delete / restore / purge
    # ------------------------------------------------------------------

    def _require_user_manager(self, actor: Actor, user: User) -> None:
        """Masters manage anyone; other provisioners only accounts they created."""
        require_capability(actor.role, Capability.PROVISION_USERS)
        if actor.role == Role.MASTER:
            return
        if user.created_by_user_id != actor.id:
            raise AccessDeniedError(str(actor.id), "user", str(user.id))

    def soft_delete_user(self, actor: Actor, user_id: UUID) -> None:
        user = self.session.get(User, user_id)
        if user is None or user.status_deleted:
            raise UserNotFoundError(str(user_id))
        self._require_user_manager(actor, user)
        user.mark_deleted(self._clock.now())
        self.session.flush()
        logger.info("user_soft_deleted", extra={"user_id": str(user_id)})
        self._audit(actor, "user_soft_deleted", user_id)

    def restore_user(self, actor: Actor, user_id: UUID) -> UserInfo:
        user = self.session.get(User, user_id)
        if user is None or not user.status_deleted:
            raise UserNotFoundError(str(user_id))
        self._require_user_manager(actor, user)
        user.mark_restored()
        user.updated_at = self._clock.now()
        self.session.flush()
        logger.info("user_restored", extra={"user_id": str(user_id)})
        self._audit(actor, "user_restored", user_id)
        return UserInfo.from_model(user)

    def purge_user(self, actor: Actor, user_id: UUID) -> None:
        """Hard delete.  Delegations, memberships and open edit requests go too."""
        require_capability(actor.role, Capability.PURGE_RECORDS)
        user = self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))

        for model, column, what in (
            (Branch, Branch.owner_id, "branches"),
            (OwnerTeam, OwnerTeam.primary_owner_id, "teams"),
            (Transaction, Transaction.user_id, "transactions"),
        ):
            if self.session.execute(select(model.id).where(column == user_id)).first():
                raise ValidationError(
                    f"User {user_id} still has {what}; reassign or purge them first",
                    field="user_id",
                )

        self.session.execute(
            update(Transaction)
            .where(Transaction.edit_requested_by == user_id)
            .values(
                edit_accepted=int(EditState.DEFAULT),
                edit_reason=None,
                edit_requested_by=None,
            )
        )
        self.session.execute(delete(BranchPIC).where(BranchPIC.user_id == user_id))
        self.session.execute(delete(OwnerTeamMember).where(OwnerTeamMember.user_id == user_id))
        self.session.execute(
            update(OwnerTeamMember)
            .where(OwnerTeamMember.invited_by == user_id)
            .values(invited_by=None)
        )
        self.session.execute(
            update(User)
            .where(User.created_by_user_id == user_id)
            .values(created_by_user_id=None)
        )
        self.session.delete(user)
        self.session.flush()
        logger.warning("user_purged", extra={"user_id": str(user_id), "purged_by": str(actor.id)})
        self._audit(actor, "user_purged", user_id, level="warning")

    def _audit(self, actor: Actor, event: str, user_id: UUID, level: str = "info") -> None:
        self._activity.record_system(
            level, "user", event, context={"target_user_id": user_id}, user_id=actor.id,
        )

