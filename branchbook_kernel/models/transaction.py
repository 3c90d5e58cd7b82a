"""
Module: branchbook_kernel.models.transaction
Responsibility: ORM persistence for branch income/expense entries and their
    edit-request workflow fields.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - edit_accepted is 0 (none), 1 (pending), 2 (approved) or 3 (rejected).
    - edit_requested_by is NULL iff edit_accepted = 0
      (ck_transaction_edit_requester).  An applied edit returns the row to
      (0, NULL, NULL).
    - amount is Decimal, never float.

Failure modes:
    - IntegrityError if a write breaks the requester/state pairing.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from branchbook_kernel.db.base import SoftDeleteMixin, TimestampedBase


class Transaction(SoftDeleteMixin, TimestampedBase):
    """A single income or expense entry in a branch's books."""

    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("type IN ('income', 'expense')", name="ck_transaction_type"),
        CheckConstraint(
            "edit_accepted IN (0, 1, 2, 3)",
            name="ck_transaction_edit_state",
        ),
        CheckConstraint(
            "(edit_accepted = 0 AND edit_requested_by IS NULL) OR "
            "(edit_accepted <> 0 AND edit_requested_by IS NOT NULL)",
            name="ck_transaction_edit_requester",
        ),
        Index("idx_transaction_branch_date", "branch_id", "transaction_date"),
        Index("idx_transaction_edit_state", "edit_accepted"),
    )

    branch_id: Mapped[UUID] = mapped_column(
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Author
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)

    category: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Edit workflow
    edit_accepted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    edit_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    edit_requested_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
