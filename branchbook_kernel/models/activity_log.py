"""
Module: branchbook_kernel.models.activity_log
Responsibility: ORM persistence for the activity (audit) trail and system
    log records.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Every activity row names a branch.  The row keeps display snapshots
      (actor name/email/role, branch name) so it stays readable after the
      user or branch is purged.  Neither table has foreign keys.
    - System rows may omit the branch.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from branchbook_kernel.db.base import Base


class ActivityLog(Base):
    """One mutating operation performed by a user on a branch-scoped entity."""

    __tablename__ = "activity_logs"

    __table_args__ = (
        Index("idx_activity_branch_created", "branch_id", "created_at"),
        Index("idx_activity_user", "user_id"),
        Index("idx_activity_entity", "entity_type", "entity_id"),
    )

    user_id: Mapped[UUID] = mapped_column(nullable=False)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_role: Mapped[str | None] = mapped_column(String(20), nullable=True)

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    branch_id: Mapped[UUID] = mapped_column(nullable=False)
    branch_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="success")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # "metadata" is reserved on declarative classes
    extra_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class SystemLog(Base):
    """A system-level event not tied to a single user action."""

    __tablename__ = "system_logs"

    __table_args__ = (
        Index("idx_system_log_level_created", "level", "created_at"),
        Index("idx_system_log_category", "category"),
    )

    level: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    branch_id: Mapped[UUID | None] = mapped_column(nullable=True)

    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    stack_trace: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
