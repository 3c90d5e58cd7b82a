"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures returned by every service and
    selector: the calling ``Actor``, user/team/branch views, the branch
    limit check result, subscription views, transactions, edit requests
    and audit rows.  Services never hand ORM rows to their callers.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ``from_model()`` class methods exist as boundary converters but are only
    invoked from the service and selector layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from branchbook_kernel.domain.edit_workflow import EditState
from branchbook_kernel.domain.roles import MembershipStatus, Role, TeamRole

if TYPE_CHECKING:
    from branchbook_kernel.models.activity_log import (
        ActivityLog as ActivityLogModel,
        SystemLog as SystemLogModel,
    )
    from branchbook_kernel.models.branch import Branch as BranchModel
    from branchbook_kernel.models.subscription import (
        Subscription as SubscriptionModel,
        SubscriptionPlan as SubscriptionPlanModel,
    )
    from branchbook_kernel.models.team import OwnerTeam as OwnerTeamModel
    from branchbook_kernel.models.transaction import Transaction as TransactionModel
    from branchbook_kernel.models.user import User as UserModel


class TransactionType(str, Enum):
    """Direction of a bookkeeping entry."""

    INCOME = "income"
    EXPENSE = "expense"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""

    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


SUBSCRIPTION_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
    }),
    SubscriptionStatus.ACTIVE: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.EXPIRED,
        SubscriptionStatus.CANCELLED,
    }),
    SubscriptionStatus.EXPIRED: frozenset({SubscriptionStatus.ACTIVE}),
    SubscriptionStatus.CANCELLED: frozenset(),
}


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Actor:
    """
    The authenticated caller of an operation.

    ``created_by_user_id`` is the owner that provisioned this account; it is
    what co-owner fallback rules consult.
    """

    id: UUID
    role: Role
    created_by_user_id: UUID | None = None

    @classmethod
    def from_user(cls, user: UserInfo) -> Actor:
        return cls(id=user.id, role=user.role, created_by_user_id=user.created_by_user_id)


@dataclass(frozen=True)
class UserInfo:
    """Immutable view of a user account."""

    id: UUID
    email: str
    name: str
    role: Role
    created_by_user_id: UUID | None
    is_deleted: bool = False
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: UserModel) -> UserInfo:
        return cls(
            id=model.id,
            email=model.email,
            name=model.name,
            role=Role(model.role),
            created_by_user_id=model.created_by_user_id,
            is_deleted=model.status_deleted,
            created_at=model.created_at,
        )


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TeamInfo:
    id: UUID
    name: str
    primary_owner_id: UUID
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: OwnerTeamModel) -> TeamInfo:
        return cls(
            id=model.id,
            name=model.name,
            primary_owner_id=model.primary_owner_id,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class TeamMemberInfo:
    """A membership row joined with the member's display fields."""

    team_id: UUID
    user_id: UUID
    name: str
    email: str
    user_role: Role
    role: TeamRole
    status: MembershipStatus
    invited_by: UUID | None
    joined_at: datetime | None


# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DelegateInfo:
    """An admin assigned as PIC (person in charge) of a branch."""

    user_id: UUID
    name: str
    email: str


@dataclass(frozen=True)
class BranchInfo:
    """
    Immutable view of a branch with its delegates.

    ``pics`` is ordered by (name, email).  ``pic_id`` / ``pic_name`` expose
    the first delegate for callers that still expect a single PIC.
    """

    id: UUID
    name: str
    address: str | None
    phone: str | None
    owner_id: UUID
    team_id: UUID | None
    status_active: bool
    is_deleted: bool = False
    created_at: datetime | None = None
    pics: tuple[DelegateInfo, ...] = field(default_factory=tuple)

    @property
    def pic_id(self) -> UUID | None:
        return self.pics[0].user_id if self.pics else None

    @property
    def pic_name(self) -> str | None:
        return self.pics[0].name if self.pics else None

    @classmethod
    def from_model(
        cls,
        model: BranchModel,
        pics: tuple[DelegateInfo, ...] = (),
    ) -> BranchInfo:
        return cls(
            id=model.id,
            name=model.name,
            address=model.address,
            phone=model.phone,
            owner_id=model.owner_id,
            team_id=model.team_id,
            status_active=model.status_active,
            is_deleted=model.status_deleted,
            created_at=model.created_at,
            pics=tuple(pics),
        )


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BranchLimitCheck:
    """
    Outcome of the subscription gate.

    ``max_branches`` is None when the plan is unlimited.  ``reason`` is set
    only when ``allowed`` is False.
    """

    allowed: bool
    current_branches: int
    max_branches: int | None
    is_unlimited: bool
    plan_name: str | None
    reason: str | None = None


@dataclass(frozen=True)
class SubscriptionPlanInfo:
    id: UUID
    name: str
    description: str | None
    max_branches: int | None
    price_monthly: Decimal
    price_yearly: Decimal
    is_active: bool

    @property
    def is_unlimited(self) -> bool:
        return self.max_branches is None

    @classmethod
    def from_model(cls, model: SubscriptionPlanModel) -> SubscriptionPlanInfo:
        return cls(
            id=model.id,
            name=model.name,
            description=model.description,
            max_branches=model.max_branches,
            price_monthly=model.price_monthly,
            price_yearly=model.price_yearly,
            is_active=model.is_active,
        )


@dataclass(frozen=True)
class SubscriptionInfo:
    id: UUID
    user_id: UUID
    plan_id: UUID
    plan_name: str
    max_branches: int | None
    billing_period: BillingPeriod
    status: SubscriptionStatus
    start_date: date
    end_date: date
    auto_renew: bool

    @classmethod
    def from_model(cls, model: SubscriptionModel) -> SubscriptionInfo:
        return cls(
            id=model.id,
            user_id=model.user_id,
            plan_id=model.plan_id,
            plan_name=model.plan.name,
            max_branches=model.plan.max_branches,
            billing_period=BillingPeriod(model.billing_period),
            status=SubscriptionStatus(model.status),
            start_date=model.start_date,
            end_date=model.end_date,
            auto_renew=model.auto_renew,
        )


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionInfo:
    """Immutable view of a transaction including its edit-workflow fields."""

    id: UUID
    branch_id: UUID
    user_id: UUID
    type: TransactionType
    category: str
    amount: Decimal
    note: str | None
    transaction_date: date
    edit_accepted: EditState
    edit_reason: str | None
    edit_requested_by: UUID | None
    is_deleted: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TransactionModel) -> TransactionInfo:
        return cls(
            id=model.id,
            branch_id=model.branch_id,
            user_id=model.user_id,
            type=TransactionType(model.type),
            category=model.category,
            amount=model.amount,
            note=model.note,
            transaction_date=model.transaction_date,
            edit_accepted=EditState(model.edit_accepted),
            edit_reason=model.edit_reason,
            edit_requested_by=model.edit_requested_by,
            is_deleted=model.status_deleted,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


@dataclass(frozen=True)
class TransactionPage:
    """One page of a branch's transactions."""

    items: tuple[TransactionInfo, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass(frozen=True)
class EditRequestInfo:
    """A transaction with an open or decided edit request."""

    transaction_id: UUID
    branch_id: UUID
    branch_name: str
    state: EditState
    reason: str | None
    requested_by: UUID
    requester_name: str
    type: TransactionType
    category: str
    amount: Decimal
    transaction_date: date
    updated_at: datetime | None


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActivityLogInfo:
    """An activity row with its display snapshots."""

    id: UUID
    user_id: UUID
    user_name: str | None
    user_role: str | None
    action: str
    entity_type: str
    entity_id: str | None
    branch_id: UUID
    branch_name: str | None
    changes: dict | None
    status: str
    metadata: dict | None
    created_at: datetime

    @classmethod
    def from_model(cls, model: ActivityLogModel) -> ActivityLogInfo:
        return cls(
            id=model.id,
            user_id=model.user_id,
            user_name=model.user_name,
            user_role=model.user_role,
            action=model.action,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            branch_id=model.branch_id,
            branch_name=model.branch_name,
            changes=model.changes,
            status=model.status,
            metadata=model.extra_metadata,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class SystemLogInfo:
    id: UUID
    level: str
    category: str
    message: str
    context: dict | None
    user_id: UUID | None
    branch_id: UUID | None
    created_at: datetime

    @classmethod
    def from_model(cls, model: SystemLogModel) -> SystemLogInfo:
        return cls(
            id=model.id,
            level=model.level,
            category=model.category,
            message=model.message,
            context=model.context,
            user_id=model.user_id,
            branch_id=model.branch_id,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class LogPage:
    """One page of audit rows, newest first."""

    items: tuple[ActivityLogInfo, ...] | tuple[SystemLogInfo, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0
