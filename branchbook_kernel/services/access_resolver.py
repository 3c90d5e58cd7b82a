"""
AccessResolver -- who may act on which branch.

Responsibility:
    Single source of truth for branch-scoped authorization.  Every service
    that touches a branch, its delegates or its transactions asks this
    resolver first.

Architecture position:
    Kernel > Services.  Read-only: never flushes or writes.

Decision order for ``has_access`` (first match wins):
    1. the user owns the branch;
    2. a delegate (PIC) row exists for (branch, user), whatever the user's
       role;
    3. the branch belongs to a team the user reaches (primary owner or an
       active membership of any role);
    4. the user is a co-owner whose creator owns the branch or reaches the
       branch's team;
    5. otherwise denied.

Failure modes:
    - ``has_access`` never raises; a missing or soft-deleted branch is
      simply denied.
    - ``require_access`` raises BranchNotFoundError / AccessDeniedError.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from branchbook_kernel.domain.dtos import Actor, BranchInfo
from branchbook_kernel.domain.roles import Capability, Role, has_capability
from branchbook_kernel.exceptions import AccessDeniedError, BranchNotFoundError
from branchbook_kernel.logging_config import get_logger
from branchbook_kernel.models.branch import Branch
from branchbook_kernel.models.user import User
from branchbook_kernel.selectors.branch_selector import BranchSelector
from branchbook_kernel.services.team_service import TeamService

logger = get_logger("services.access")


def _coerce_role(role: Role | str | None) -> Role | None:
    if role is None:
        return None
    try:
        return Role(role)
    except ValueError:
        return None


class AccessResolver:
    """Branch access decisions."""

    def __init__(self, session: Session, teams: TeamService | None = None):
        self.session = session
        self._teams = teams or TeamService(session)
        self._branches = BranchSelector(session)

    def _creator_of(self, user_id: UUID) -> UUID | None:
        return self.session.execute(
            select(User.created_by_user_id).where(
                User.id == user_id,
                User.status_deleted.is_(False),
            )
        ).scalar_one_or_none()

    def has_access(self, user_id: UUID, role: Role | str | None, branch_id: UUID) -> bool:
        return self._decide(user_id, role, branch_id, include_deleted=False)

    def has_access_ignoring_deletion(
        self,
        user_id: UUID,
        role: Role | str | None,
        branch_id: UUID,
    ) -> bool:
        """Same rules as ``has_access``, also applied to soft-deleted branches."""
        return self._decide(user_id, role, branch_id, include_deleted=True)

    def _decide(
        self,
        user_id: UUID,
        role: Role | str | None,
        branch_id: UUID,
        include_deleted: bool,
    ) -> bool:
        stmt = select(Branch.owner_id, Branch.team_id).where(Branch.id == branch_id)
        if not include_deleted:
            stmt = stmt.where(Branch.status_deleted.is_(False))
        row = self.session.execute(stmt).first()
        if row is None:
            return False
        owner_id, team_id = row

        if owner_id == user_id:
            return True
        if self._branches.is_delegate(branch_id, user_id):
            return True
        if team_id is not None and self._teams.user_has_team_access(user_id, team_id):
            return True

        if _coerce_role(role) == Role.CO_OWNER:
            creator_id = self._creator_of(user_id)
            if creator_id is not None:
                if owner_id == creator_id:
                    return True
                if team_id is not None and self._teams.user_has_team_access(creator_id, team_id):
                    return True
        return False

    def accessible_branch_ids(self, user_id: UUID, role: Role | str | None) -> set[UUID]:
        """Ids of every live branch the user may act on."""
        role = _coerce_role(role)
        if role is not None and has_capability(role, Capability.VIEW_ALL_BRANCHES):
            return self._branches.all_ids()
        if role == Role.ADMIN:
            return self._branches.delegated_ids(user_id)
        if role == Role.OWNER:
            return (
                self._branches.owned_ids([user_id])
                | self._branches.team_ids_to_branch_ids(self._teams.team_ids_for_user(user_id))
            )
        if role == Role.CO_OWNER:
            ids = (
                self._branches.owned_ids([user_id])
                | self._branches.team_ids_to_branch_ids(self._teams.team_ids_for_user(user_id))
            )
            creator_id = self._creator_of(user_id)
            if creator_id is not None:
                ids |= self._branches.owned_ids([creator_id])
                ids |= self._branches.team_ids_to_branch_ids(
                    self._teams.team_ids_for_user(creator_id)
                )
            return ids
        return set()

    def find_accessible_branches(self, user_id: UUID, role: Role | str | None) -> list[BranchInfo]:
        """Accessible branches with delegates attached, newest first."""
        return self._branches.list_by_ids(self.accessible_branch_ids(user_id, role))

    def require_access(self, actor: Actor, branch_id: UUID) -> BranchInfo:
        """
        Return the branch, or raise if it is missing or the actor is denied.

        Roles holding VIEW_ALL_BRANCHES pass without a resolver decision.
        """
        branch = self._branches.find_by_id(branch_id)
        if branch is None:
            raise BranchNotFoundError(str(branch_id))
        if has_capability(actor.role, Capability.VIEW_ALL_BRANCHES):
            return branch
        if not self.has_access(actor.id, actor.role, branch_id):
            logger.info(
                "branch_access_denied",
                extra={"user_id": str(actor.id), "branch_id": str(branch_id)},
            )
            raise AccessDeniedError(str(actor.id), "branch", str(branch_id))
        return branch
