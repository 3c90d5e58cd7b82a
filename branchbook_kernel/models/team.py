"""
Module: branchbook_kernel.models.team
Responsibility: ORM persistence for owner teams and their membership rows.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One membership row per (team, user) (uq_team_member).  Re-adding a user
      reactivates the existing row instead of inserting a second one.
    - Membership role is owner / co-owner / member; status is active /
      invited / removed.
    - Deleting a team cascades to its membership rows.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from branchbook_kernel.db.base import TimestampedBase


class OwnerTeam(TimestampedBase):
    """A group of owners and co-owners sharing oversight of branches."""

    __tablename__ = "owner_teams"

    __table_args__ = (
        Index("idx_owner_team_primary_owner", "primary_owner_id"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    primary_owner_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<OwnerTeam {self.name}>"


class OwnerTeamMember(TimestampedBase):
    """Membership of a user in an owner team."""

    __tablename__ = "owner_team_members"

    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_member"),
        CheckConstraint(
            "role IN ('owner', 'co-owner', 'member')",
            name="ck_team_member_role",
        ),
        CheckConstraint(
            "status IN ('active', 'invited', 'removed')",
            name="ck_team_member_status",
        ),
        Index("idx_team_member_user_status", "user_id", "status"),
    )

    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("owner_teams.id", ondelete="CASCADE"),
        nullable=False,
    )

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    invited_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    joined_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
