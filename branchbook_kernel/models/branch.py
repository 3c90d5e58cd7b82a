"""
Module: branchbook_kernel.models.branch
Responsibility: ORM persistence for branches and their delegates (PICs).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Every branch has exactly one owning user (owner_id NOT NULL).
    - A (branch, user) delegate pair appears at most once (uq_branch_pic).
    - Deleting a team detaches its branches (team_id SET NULL); purging a
      branch cascades to its delegate rows.

Failure modes:
    - IntegrityError on a duplicate delegate pair.
"""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from branchbook_kernel.db.base import SoftDeleteMixin, TimestampedBase


class Branch(SoftDeleteMixin, TimestampedBase):
    """A business location whose books are kept in this system."""

    __tablename__ = "branches"

    __table_args__ = (
        Index("idx_branch_owner", "owner_id"),
        Index("idx_branch_team", "team_id"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    owner_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
    )

    team_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("owner_teams.id", ondelete="SET NULL"),
        nullable=True,
    )

    status_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Branch {self.name}>"


class BranchPIC(TimestampedBase):
    """An admin delegated to keep the books of a branch."""

    __tablename__ = "branch_pics"

    __table_args__ = (
        UniqueConstraint("branch_id", "user_id", name="uq_branch_pic"),
        Index("idx_branch_pic_user", "user_id"),
    )

    branch_id: Mapped[UUID] = mapped_column(
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
    )

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
