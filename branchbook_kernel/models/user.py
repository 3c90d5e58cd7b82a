"""
Module: branchbook_kernel.models.user
Responsibility: ORM persistence for user accounts.  A user holds exactly one
    role and optionally remembers the owner that provisioned it.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - email is globally unique (uq_user_email), soft-deleted rows included.
    - role is one of master / owner / co-owner / admin (ck_user_role).
    - Soft-deleted users are absent to every lookup; only purge issues DELETE.

Failure modes:
    - IntegrityError on duplicate email.
"""

from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from branchbook_kernel.db.base import SoftDeleteMixin, TimestampedBase


class User(SoftDeleteMixin, TimestampedBase):
    """
    A person who can sign in.

    ``created_by_user_id`` links provisioned admins and co-owners back to the
    owner that created them; co-owner access fallbacks read it.
    """

    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("email", name="uq_user_email"),
        CheckConstraint(
            "role IN ('master', 'owner', 'co-owner', 'admin')",
            name="ck_user_role",
        ),
        Index("idx_user_role", "role"),
        Index("idx_user_created_by", "created_by_user_id"),
    )

    email: Mapped[str] = mapped_column(String(255), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[str] = mapped_column(String(20), nullable=False)

    # Owner that provisioned this account (NULL for self-registered owners)
    created_by_user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Opaque reference held for the identity provider (hash, external id)
    credential_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
