"""
BranchRegistry -- branches and their delegates (PICs).

Responsibility:
    Creates branches behind the subscription gate, edits / soft-deletes /
    restores / purges them, and maintains the many-to-many delegate set
    of each branch.

Architecture position:
    Kernel > Services.  Uses AccessResolver for every branch-scoped check,
    SubscriptionGate for the branch ceiling and TeamService for team
    auto-resolution.

Invariants enforced:
    - A branch is created only when the billing owner's plan allows it.
    - Every delegate is a live admin.  Batch replacement validates every
      candidate before touching storage; on any offender nothing changes.
    - ``set_delegates`` runs delete-all + insert-all inside a SAVEPOINT, so
      readers never observe a partial set.
    - When no team is given, a new branch joins the actor's first team (a
      co-owner: its creator's first team).  An explicit team must be
      reachable by the actor.

Failure modes:
    - CapabilityRequiredError, AccessDeniedError, BranchNotFoundError.
    - BranchLimitExceededError from the gate.
    - InvalidRoleError naming the first offending delegate.
    - ValidationError for blank names or unknown update fields.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from branchbook_kernel.domain.clock import Clock
from branchbook_kernel.domain.dtos import Actor, BranchInfo, DelegateInfo
from branchbook_kernel.domain.roles import Capability, Role, require_capability
from branchbook_kernel.exceptions import (
    AccessDeniedError,
    BranchNotFoundError,
    InvalidRoleError,
    ValidationError,
)
from branchbook_kernel.logging_config import LogContext, get_logger
from branchbook_kernel.models.branch import Branch, BranchPIC
from branchbook_kernel.models.transaction import Transaction
from branchbook_kernel.models.user import User
from branchbook_kernel.selectors.branch_selector import BranchSelector
from branchbook_kernel.services.access_resolver import AccessResolver
from branchbook_kernel.services.activity_recorder import ActivityRecorder, ActivitySink
from branchbook_kernel.services.base import BaseService
from branchbook_kernel.services.subscription_gate import SubscriptionGate
from branchbook_kernel.services.team_service import TeamService

logger = get_logger("services.branch")

UPDATABLE_FIELDS = frozenset({"name", "address", "phone", "status_active", "team_id"})


def _snapshot(branch: Branch) -> dict[str, Any]:
    return {
        "name": branch.name,
        "address": branch.address,
        "phone": branch.phone,
        "owner_id": branch.owner_id,
        "team_id": branch.team_id,
        "status_active": branch.status_active,
        "status_deleted": branch.status_deleted,
    }


def _unique(ids: Iterable[UUID]) -> list[UUID]:
    return list(dict.fromkeys(ids))


class BranchRegistry(BaseService):
    """Branch lifecycle and delegate management."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        gate: SubscriptionGate | None = None,
        resolver: AccessResolver | None = None,
        teams: TeamService | None = None,
        activity: ActivitySink | None = None,
    ):
        super().__init__(session, clock)
        self._activity = activity or ActivityRecorder(session, clock=self._clock)
        self._teams = teams or TeamService(session, self._clock, activity=self._activity)
        self._gate = gate or SubscriptionGate(
            session, self._clock, teams=self._teams, activity=self._activity,
        )
        self._resolver = resolver or AccessResolver(session, self._teams)
        self._branches = BranchSelector(session)

    # ------------------------------------------------------------------
    # Branch lifecycle
    # ------------------------------------------------------------------

    def create_branch(
        self,
        actor: Actor,
        name: str,
        address: str | None = None,
        phone: str | None = None,
        team_id: UUID | None = None,
        delegate_ids: Iterable[UUID] = (),
    ) -> BranchInfo:
        require_capability(actor.role, Capability.CREATE_BRANCH)
        name = self._clean_name(name)
        self._gate.ensure_can_create_branch(actor.id, actor.role)

        delegates = _unique(delegate_ids)
        self._validate_delegates(delegates)

        if team_id is not None:
            self._teams.get_team(team_id)
            if not self._reaches_team(actor, team_id):
                raise AccessDeniedError(str(actor.id), "team", str(team_id))
        else:
            team_id = self._default_team_id(actor)

        now = self._clock.now()
        branch = Branch(
            name=name,
            address=address,
            phone=phone,
            owner_id=actor.id,
            team_id=team_id,
            status_active=True,
            created_at=now,
            updated_at=now,
        )
        self.session.add(branch)
        self.session.flush()

        for user_id in delegates:
            self.session.add(BranchPIC(
                branch_id=branch.id, user_id=user_id, created_at=now, updated_at=now,
            ))
        self.session.flush()

        self._activity.record_activity(
            actor.id, "create", "branch", branch.id, branch.id,
            after={**_snapshot(branch), "delegate_ids": delegates},
        )
        with LogContext.bind(actor_id=actor.id, branch_id=branch.id):
            logger.info(
                "branch_created",
                extra={
                    "team_id": str(team_id) if team_id else None,
                    "delegate_count": len(delegates),
                },
            )
        return BranchInfo.from_model(branch, self._branches.get_delegates(branch.id))

    def get_branch(self, actor: Actor, branch_id: UUID) -> BranchInfo:
        return self._resolver.require_access(actor, branch_id)

    def list_branches(self, actor: Actor) -> list[BranchInfo]:
        return self._resolver.find_accessible_branches(actor.id, actor.role)

    def update_branch(self, actor: Actor, branch_id: UUID, **changes: Any) -> BranchInfo:
        require_capability(actor.role, Capability.MANAGE_BRANCH)
        self._resolver.require_access(actor, branch_id)

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot update branch fields: {sorted(unknown)}", field=sorted(unknown)[0],
            )
        if "name" in changes:
            changes["name"] = self._clean_name(changes["name"])
        new_team = changes.get("team_id")
        if new_team is not None:
            self._teams.get_team(new_team)
            if not self._reaches_team(actor, new_team):
                raise AccessDeniedError(str(actor.id), "team", str(new_team))

        branch = self._branches.find_model(branch_id)
        before = _snapshot(branch)
        for key, value in changes.items():
            setattr(branch, key, value)
        branch.updated_at = self._clock.now()
        self.session.flush()

        self._forget_branch_name(branch_id)
        self._activity.record_activity(
            actor.id, "update", "branch", branch_id, branch_id,
            before=before, after=_snapshot(branch),
        )
        logger.info(
            "branch_updated",
            extra={"branch_id": str(branch_id), "fields": sorted(changes)},
        )
        return BranchInfo.from_model(branch, self._branches.get_delegates(branch_id))

    def soft_delete_branch(self, actor: Actor, branch_id: UUID) -> None:
        require_capability(actor.role, Capability.MANAGE_BRANCH)
        self._resolver.require_access(actor, branch_id)
        branch = self._branches.find_model(branch_id)
        before = _snapshot(branch)
        branch.mark_deleted(self._clock.now())
        self.session.flush()
        self._activity.record_activity(
            actor.id, "delete", "branch", branch_id, branch_id,
            before=before, after=_snapshot(branch),
        )
        logger.info("branch_soft_deleted", extra={"branch_id": str(branch_id)})

    def restore_branch(self, actor: Actor, branch_id: UUID) -> BranchInfo:
        """Undo a soft delete.  The restored branch counts against the plan again."""
        require_capability(actor.role, Capability.MANAGE_BRANCH)
        branch = self._branches.find_model(branch_id, include_deleted=True)
        if branch is None or not branch.status_deleted:
            raise BranchNotFoundError(str(branch_id))
        if not self._resolver.has_access_ignoring_deletion(actor.id, actor.role, branch_id):
            raise AccessDeniedError(str(actor.id), "branch", str(branch_id))
        self._gate.ensure_can_create_branch(actor.id, actor.role)

        before = _snapshot(branch)
        branch.mark_restored()
        branch.updated_at = self._clock.now()
        self.session.flush()
        self._activity.record_activity(
            actor.id, "restore", "branch", branch_id, branch_id,
            before=before, after=_snapshot(branch),
        )
        logger.info("branch_restored", extra={"branch_id": str(branch_id)})
        return BranchInfo.from_model(branch, self._branches.get_delegates(branch_id))

    def purge_branch(self, actor: Actor, branch_id: UUID) -> None:
        """Hard delete a branch with its delegates and transactions."""
        require_capability(actor.role, Capability.PURGE_RECORDS)
        branch = self._branches.find_model(branch_id, include_deleted=True)
        if branch is None:
            raise BranchNotFoundError(str(branch_id))
        branch_name = branch.name

        removed = self.session.execute(
            delete(Transaction).where(Transaction.branch_id == branch_id)
        ).rowcount
        self.session.execute(delete(BranchPIC).where(BranchPIC.branch_id == branch_id))
        self.session.delete(branch)
        self.session.flush()
        self._forget_branch_name(branch_id)
        logger.warning(
            "branch_purged",
            extra={
                "branch_id": str(branch_id),
                "purged_by": str(actor.id),
                "transactions_removed": removed,
            },
        )
        self._activity.record_system(
            "warning", "branch", "branch_purged",
            context={"branch_name": branch_name, "transactions_removed": removed},
            user_id=actor.id,
            branch_id=branch_id,
        )

    # ------------------------------------------------------------------
    # Delegates
    # ------------------------------------------------------------------

    def get_delegates(self, branch_id: UUID) -> tuple[DelegateInfo, ...]:
        return self._branches.get_delegates(branch_id)

    def assign_delegate(self, actor: Actor, branch_id: UUID, user_id: UUID) -> tuple[DelegateInfo, ...]:
        """Add one delegate.  Assigning an existing delegate is a no-op."""
        require_capability(actor.role, Capability.MANAGE_DELEGATES)
        self._resolver.require_access(actor, branch_id)
        self._validate_delegates([user_id])

        if not self._branches.is_delegate(branch_id, user_id):
            now = self._clock.now()
            self.session.add(BranchPIC(
                branch_id=branch_id, user_id=user_id, created_at=now, updated_at=now,
            ))
            self.session.flush()
            self._activity.record_activity(
                actor.id, "assign_delegate", "branch_pic", user_id, branch_id,
                after={"user_id": user_id},
            )
            logger.info(
                "delegate_assigned",
                extra={"branch_id": str(branch_id), "user_id": str(user_id)},
            )
        return self._branches.get_delegates(branch_id)

    def remove_delegate(
        self,
        actor: Actor,
        branch_id: UUID,
        user_id: UUID | None = None,
    ) -> tuple[DelegateInfo, ...]:
        """Remove one delegate, or every delegate when ``user_id`` is None."""
        require_capability(actor.role, Capability.MANAGE_DELEGATES)
        self._resolver.require_access(actor, branch_id)

        stmt = delete(BranchPIC).where(BranchPIC.branch_id == branch_id)
        if user_id is not None:
            stmt = stmt.where(BranchPIC.user_id == user_id)
        removed = self.session.execute(stmt).rowcount
        self.session.flush()

        if removed:
            self._activity.record_activity(
                actor.id, "remove_delegate", "branch_pic", user_id, branch_id,
                before={"user_id": user_id} if user_id else None,
            )
        logger.info(
            "delegates_removed",
            extra={
                "branch_id": str(branch_id),
                "user_id": str(user_id) if user_id else None,
                "removed": removed,
            },
        )
        return self._branches.get_delegates(branch_id)

    def set_delegates(
        self,
        actor: Actor,
        branch_id: UUID,
        user_ids: Iterable[UUID],
    ) -> tuple[DelegateInfo, ...]:
        """
        Replace the delegate set atomically.

        Every candidate is validated first; on any offender the call fails
        with InvalidRoleError and the previous delegates are untouched.
        """
        require_capability(actor.role, Capability.MANAGE_DELEGATES)
        self._resolver.require_access(actor, branch_id)
        candidates = _unique(user_ids)
        self._validate_delegates(candidates)

        previous = [d.user_id for d in self._branches.get_delegates(branch_id)]
        now = self._clock.now()
        with self.session.begin_nested():
            self.session.execute(delete(BranchPIC).where(BranchPIC.branch_id == branch_id))
            for user_id in candidates:
                self.session.add(BranchPIC(
                    branch_id=branch_id, user_id=user_id, created_at=now, updated_at=now,
                ))

        self._activity.record_activity(
            actor.id, "set_delegates", "branch", branch_id, branch_id,
            before={"delegate_ids": sorted(str(u) for u in previous)},
            after={"delegate_ids": sorted(str(u) for u in candidates)},
        )
        logger.info(
            "delegates_replaced",
            extra={"branch_id": str(branch_id), "delegate_count": len(candidates)},
        )
        return self._branches.get_delegates(branch_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_delegates(self, user_ids: list[UUID]) -> None:
        """Raise InvalidRoleError for the first candidate that is not a live admin."""
        if not user_ids:
            return
        roles = dict(self.session.execute(
            select(User.id, User.role).where(
                User.id.in_(user_ids),
                User.status_deleted.is_(False),
            )
        ).all())
        for user_id in user_ids:
            actual = roles.get(user_id)
            if actual != Role.ADMIN.value:
                raise InvalidRoleError(str(user_id), Role.ADMIN.value, actual)

    def _reaches_team(self, actor: Actor, team_id: UUID) -> bool:
        if self._teams.user_has_team_access(actor.id, team_id):
            return True
        return (
            actor.role == Role.CO_OWNER
            and self._teams.user_has_team_access(actor.created_by_user_id, team_id)
        )

    def _default_team_id(self, actor: Actor) -> UUID | None:
        if actor.role == Role.CO_OWNER and actor.created_by_user_id is not None:
            teams = self._teams.find_teams_for_user(actor.created_by_user_id)
            if teams:
                return teams[0].id
        teams = self._teams.find_teams_for_user(actor.id)
        return teams[0].id if teams else None

    def _forget_branch_name(self, branch_id: UUID) -> None:
        forget = getattr(self._activity, "forget", None)
        if forget is not None:
            forget("branch", branch_id)

    @staticmethod
    def _clean_name(name: str | None) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("Branch name is required", field="name")
        return cleaned
