"""
Module: branchbook_kernel.models.subscription
Responsibility: ORM persistence for subscription plans and owner
    subscriptions.  Plans carry the branch ceiling; subscriptions tie an
    owner to a plan for a billing period.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Plan names are unique (uq_subscription_plan_name).
    - max_branches NULL means unlimited.
    - end_date >= start_date (ck_subscription_dates).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from branchbook_kernel.db.base import TimestampedBase


class SubscriptionPlan(TimestampedBase):
    """A purchasable plan defining the branch ceiling."""

    __tablename__ = "subscription_plans"

    __table_args__ = (
        UniqueConstraint("name", name="uq_subscription_plan_name"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # NULL = unlimited
    max_branches: Mapped[int | None] = mapped_column(Integer, nullable=True)

    price_monthly: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    price_yearly: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Subscription(TimestampedBase):
    """An owner's subscription to a plan."""

    __tablename__ = "subscriptions"

    __table_args__ = (
        CheckConstraint(
            "billing_period IN ('monthly', 'yearly')",
            name="ck_subscription_billing_period",
        ),
        CheckConstraint(
            "status IN ('pending', 'active', 'expired', 'cancelled')",
            name="ck_subscription_status",
        ),
        CheckConstraint("end_date >= start_date", name="ck_subscription_dates"),
        Index("idx_subscription_user_status", "user_id", "status"),
    )

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    plan_id: Mapped[UUID] = mapped_column(
        ForeignKey("subscription_plans.id"),
        nullable=False,
    )

    billing_period: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    plan: Mapped[SubscriptionPlan] = relationship(lazy="joined")
