"""
BranchSelector -- read-only branch and delegate queries.

Responsibility:
    Loads branches as BranchInfo DTOs with their delegates attached, and
    provides the id-set projections (owned, team-reachable, delegated) that
    the access resolver and subscription gate combine.

Architecture position:
    Kernel > Selectors.  Reads models; never mutates.

Invariants enforced:
    - Soft-deleted branches never appear.
    - Delegates are ordered by (name, email); soft-deleted or non-admin
      users are not reported as delegates.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select

from branchbook_kernel.domain.dtos import BranchInfo, DelegateInfo
from branchbook_kernel.domain.roles import Role
from branchbook_kernel.models.branch import Branch, BranchPIC
from branchbook_kernel.models.user import User
from branchbook_kernel.selectors.base import BaseSelector


class BranchSelector(BaseSelector):
    """Queries over live branches and their delegates."""

    # ------------------------------------------------------------------
    # Delegates
    # ------------------------------------------------------------------

    def delegates_for(self, branch_ids: Iterable[UUID]) -> dict[UUID, tuple[DelegateInfo, ...]]:
        """Active admin delegates per branch, each list ordered by (name, email)."""
        ids = set(branch_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(BranchPIC.branch_id, User.id, User.name, User.email)
            .join(User, User.id == BranchPIC.user_id)
            .where(
                BranchPIC.branch_id.in_(ids),
                User.status_deleted.is_(False),
                User.role == Role.ADMIN.value,
            )
            .order_by(User.name, User.email)
        ).all()
        grouped: dict[UUID, list[DelegateInfo]] = defaultdict(list)
        for branch_id, user_id, name, email in rows:
            grouped[branch_id].append(DelegateInfo(user_id=user_id, name=name, email=email))
        return {bid: tuple(pics) for bid, pics in grouped.items()}

    def get_delegates(self, branch_id: UUID) -> tuple[DelegateInfo, ...]:
        return self.delegates_for([branch_id]).get(branch_id, ())

    def is_delegate(self, branch_id: UUID, user_id: UUID) -> bool:
        """True if a PIC row exists for the pair, whatever the user's role."""
        row = self.session.execute(
            select(BranchPIC.id).where(
                BranchPIC.branch_id == branch_id,
                BranchPIC.user_id == user_id,
            )
        ).first()
        return row is not None

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def find_model(self, branch_id: UUID, include_deleted: bool = False) -> Branch | None:
        """Raw row for services that need to mutate it."""
        stmt = select(Branch).where(Branch.id == branch_id)
        if not include_deleted:
            stmt = stmt.where(Branch.status_deleted.is_(False))
        return self.session.execute(stmt).scalar_one_or_none()

    def find_by_id(self, branch_id: UUID) -> BranchInfo | None:
        branch = self.find_model(branch_id)
        if branch is None:
            return None
        return BranchInfo.from_model(branch, self.get_delegates(branch.id))

    def list_by_ids(self, branch_ids: Iterable[UUID]) -> list[BranchInfo]:
        """Live branches among ``branch_ids``, newest first."""
        ids = set(branch_ids)
        if not ids:
            return []
        branches = self.session.execute(
            select(Branch)
            .where(Branch.id.in_(ids), Branch.status_deleted.is_(False))
            .order_by(Branch.created_at.desc(), Branch.name)
        ).scalars().all()
        pics = self.delegates_for(b.id for b in branches)
        return [BranchInfo.from_model(b, pics.get(b.id, ())) for b in branches]

    # ------------------------------------------------------------------
    # Id projections
    # ------------------------------------------------------------------

    def all_ids(self) -> set[UUID]:
        return set(self.session.execute(
            select(Branch.id).where(Branch.status_deleted.is_(False))
        ).scalars())

    def owned_ids(self, owner_ids: Iterable[UUID]) -> set[UUID]:
        ids = set(owner_ids)
        if not ids:
            return set()
        return set(self.session.execute(
            select(Branch.id).where(
                Branch.owner_id.in_(ids),
                Branch.status_deleted.is_(False),
            )
        ).scalars())

    def team_ids_to_branch_ids(self, team_ids: Iterable[UUID]) -> set[UUID]:
        ids = set(team_ids)
        if not ids:
            return set()
        return set(self.session.execute(
            select(Branch.id).where(
                Branch.team_id.in_(ids),
                Branch.status_deleted.is_(False),
            )
        ).scalars())

    def delegated_ids(self, user_id: UUID) -> set[UUID]:
        return set(self.session.execute(
            select(BranchPIC.branch_id)
            .join(Branch, Branch.id == BranchPIC.branch_id)
            .where(
                BranchPIC.user_id == user_id,
                Branch.status_deleted.is_(False),
            )
        ).scalars())
