"""
SubscriptionGate -- plan-gated branch limit and subscription lifecycle.

Responsibility:
    Decides whether a user may create another branch, given the branch
    ceiling of the billing owner's current plan, and manages plans and
    subscriptions (start, activate, cancel, renew, expire).  Payment
    collection happens outside the kernel.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - The current subscription is the newest ``active`` one whose end date
      has not passed.  No current subscription means the free ceiling.
    - A plan with ``max_branches`` NULL is unlimited.
    - Branches are counted as a set of ids: a branch both owned and
      reachable through a team counts once.
    - A co-owner is billed to (and counted with) the owner that created it.
    - Subscription status changes follow SUBSCRIPTION_TRANSITIONS.

Failure modes:
    - BranchLimitExceededError from ``ensure_can_create_branch``.
    - CapabilityRequiredError when the role cannot create branches.
    - SubscriptionNotFoundError, SubscriptionPlanNotFoundError,
      InvalidSubscriptionTransitionError, InvalidRoleError, ValidationError
      from the lifecycle operations.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from branchbook_kernel.domain.clock import Clock
from branchbook_kernel.domain.dtos import (
    SUBSCRIPTION_TRANSITIONS,
    BillingPeriod,
    BranchLimitCheck,
    SubscriptionInfo,
    SubscriptionPlanInfo,
    SubscriptionStatus,
)
from branchbook_kernel.domain.roles import Capability, Role, has_capability
from branchbook_kernel.exceptions import (
    BranchLimitExceededError,
    CapabilityRequiredError,
    InvalidRoleError,
    InvalidSubscriptionTransitionError,
    SubscriptionNotFoundError,
    SubscriptionPlanNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from branchbook_kernel.logging_config import get_logger
from branchbook_kernel.models.subscription import Subscription, SubscriptionPlan
from branchbook_kernel.models.user import User
from branchbook_kernel.selectors.branch_selector import BranchSelector
from branchbook_kernel.services.activity_recorder import ActivityRecorder, ActivitySink
from branchbook_kernel.services.base import BaseService
from branchbook_kernel.services.team_service import TeamService

logger = get_logger("services.subscription")

FREE_PLAN_NAME = "Free"


def add_billing_period(start: date, period: BillingPeriod | str) -> date:
    """``start`` plus one month or one year, clamped to the month's last day."""
    period = BillingPeriod(period)
    if period == BillingPeriod.YEARLY:
        year, month = start.year + 1, start.month
    else:
        year = start.year + (start.month // 12)
        month = start.month % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class SubscriptionGate(BaseService):
    """Branch-limit decisions plus the subscription lifecycle."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        free_plan_max_branches: int = 1,
        teams: TeamService | None = None,
        activity: ActivitySink | None = None,
    ):
        super().__init__(session, clock)
        if free_plan_max_branches < 0:
            raise ValueError("free_plan_max_branches must be >= 0")
        self._free_max = free_plan_max_branches
        self._activity = activity or ActivityRecorder(session, clock=self._clock)
        self._teams = teams or TeamService(session, self._clock, activity=self._activity)
        self._branches = BranchSelector(session)

    # ------------------------------------------------------------------
    # Branch limit
    # ------------------------------------------------------------------

    def get_active_subscription(
        self,
        user_id: UUID,
        as_of: date | None = None,
    ) -> SubscriptionInfo | None:
        as_of = as_of or self._clock.today()
        sub = self.session.execute(
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.end_date >= as_of,
            )
            .order_by(Subscription.created_at.desc(), Subscription.end_date.desc())
            .limit(1)
        ).scalars().first()
        return SubscriptionInfo.from_model(sub) if sub is not None else None

    def resolve_billing_owner(self, user_id: UUID, role: Role | str) -> UUID:
        """Self for owners; the creating owner for a co-owner that has one."""
        if role == Role.CO_OWNER:
            creator_id = self.session.execute(
                select(User.created_by_user_id).where(User.id == user_id)
            ).scalar_one_or_none()
            if creator_id is not None:
                creator_live = self.session.execute(
                    select(User.id).where(
                        User.id == creator_id,
                        User.status_deleted.is_(False),
                    )
                ).first()
                if creator_live is not None:
                    return creator_id
        return user_id

    def count_branches(self, user_id: UUID, role: Role | str) -> int:
        """Distinct live branches counted against the billing owner's plan."""
        billing_owner = self.resolve_billing_owner(user_id, role)
        people = {billing_owner, user_id}
        team_ids: set[UUID] = set()
        for person in people:
            team_ids |= self._teams.team_ids_for_user(person)
        ids = self._branches.owned_ids(people) | self._branches.team_ids_to_branch_ids(team_ids)
        return len(ids)

    def can_create_branch(self, user_id: UUID, role: Role | str) -> BranchLimitCheck:
        if not has_capability(role, Capability.CREATE_BRANCH):
            return BranchLimitCheck(
                allowed=False,
                current_branches=0,
                max_branches=0,
                is_unlimited=False,
                plan_name=None,
                reason="Only owners and co-owners can create branches",
            )

        billing_owner = self.resolve_billing_owner(user_id, role)
        subscription = self.get_active_subscription(billing_owner)
        current = self.count_branches(user_id, role)

        if subscription is None:
            max_branches: int | None = self._free_max
            plan_name = FREE_PLAN_NAME
        else:
            max_branches = subscription.max_branches
            plan_name = subscription.plan_name

        if max_branches is None:
            return BranchLimitCheck(
                allowed=True,
                current_branches=current,
                max_branches=None,
                is_unlimited=True,
                plan_name=plan_name,
            )

        allowed = current < max_branches
        return BranchLimitCheck(
            allowed=allowed,
            current_branches=current,
            max_branches=max_branches,
            is_unlimited=False,
            plan_name=plan_name,
            reason=None if allowed else (
                f"Branch limit reached ({current}/{max_branches}). "
                "Please upgrade your subscription."
            ),
        )

    def ensure_can_create_branch(self, user_id: UUID, role: Role | str) -> BranchLimitCheck:
        check = self.can_create_branch(user_id, role)
        if check.allowed:
            return check
        if not has_capability(role, Capability.CREATE_BRANCH):
            raise CapabilityRequiredError(
                str(getattr(role, "value", role)), Capability.CREATE_BRANCH.value,
            )
        logger.info(
            "branch_limit_reached",
            extra={
                "user_id": str(user_id),
                "current_branches": check.current_branches,
                "max_branches": check.max_branches,
                "plan_name": check.plan_name,
            },
        )
        raise BranchLimitExceededError(
            str(user_id),
            check.current_branches,
            check.max_branches or 0,
            check.plan_name,
        )

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def create_plan(
        self,
        name: str,
        max_branches: int | None = None,
        price_monthly: Decimal = Decimal("0"),
        price_yearly: Decimal = Decimal("0"),
        description: str | None = None,
        is_active: bool = True,
    ) -> SubscriptionPlanInfo:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Plan name is required", field="name")
        if max_branches is not None and max_branches < 0:
            raise ValidationError("max_branches must be >= 0 or None", field="max_branches")
        if Decimal(price_monthly) < 0 or Decimal(price_yearly) < 0:
            raise ValidationError("Plan prices must not be negative", field="price")
        taken = self.session.execute(
            select(SubscriptionPlan.id).where(SubscriptionPlan.name == name)
        ).first()
        if taken is not None:
            raise ValidationError(f"Plan name already exists: {name}", field="name")

        now = self._clock.now()
        plan = SubscriptionPlan(
            name=name,
            description=description,
            max_branches=max_branches,
            price_monthly=Decimal(price_monthly),
            price_yearly=Decimal(price_yearly),
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self.session.add(plan)
        self.session.flush()
        logger.info(
            "subscription_plan_created",
            extra={"plan_id": str(plan.id), "plan_name": name, "max_branches": max_branches},
        )
        self._audit(
            "subscription_plan_created",
            plan_id=plan.id, plan_name=name, max_branches=max_branches,
        )
        return SubscriptionPlanInfo.from_model(plan)

    def get_plan(self, plan_id: UUID) -> SubscriptionPlanInfo:
        plan = self.session.get(SubscriptionPlan, plan_id)
        if plan is None:
            raise SubscriptionPlanNotFoundError(str(plan_id))
        return SubscriptionPlanInfo.from_model(plan)

    def list_plans(self, active_only: bool = True) -> list[SubscriptionPlanInfo]:
        stmt = select(SubscriptionPlan)
        if active_only:
            stmt = stmt.where(SubscriptionPlan.is_active.is_(True))
        plans = self.session.execute(
            stmt.order_by(SubscriptionPlan.price_monthly, SubscriptionPlan.name)
        ).scalars()
        return [SubscriptionPlanInfo.from_model(p) for p in plans]

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def start_subscription(
        self,
        user_id: UUID,
        plan_id: UUID,
        billing_period: BillingPeriod | str = BillingPeriod.MONTHLY,
        start_date: date | None = None,
        auto_renew: bool = False,
    ) -> SubscriptionInfo:
        """Create a ``pending`` subscription awaiting payment confirmation."""
        user = self.session.get(User, user_id)
        if user is None or user.status_deleted:
            raise UserNotFoundError(str(user_id))
        if Role(user.role) != Role.OWNER:
            raise InvalidRoleError(str(user_id), Role.OWNER.value, user.role)

        plan = self.session.get(SubscriptionPlan, plan_id)
        if plan is None or not plan.is_active:
            raise SubscriptionPlanNotFoundError(str(plan_id))

        period = BillingPeriod(billing_period)
        start = start_date or self._clock.today()
        now = self._clock.now()
        sub = Subscription(
            user_id=user_id,
            plan_id=plan_id,
            billing_period=period.value,
            status=SubscriptionStatus.PENDING.value,
            start_date=start,
            end_date=add_billing_period(start, period),
            auto_renew=auto_renew,
            created_at=now,
            updated_at=now,
        )
        self.session.add(sub)
        self.session.flush()
        self.session.refresh(sub)

        logger.info(
            "subscription_started",
            extra={
                "subscription_id": str(sub.id),
                "user_id": str(user_id),
                "plan_name": plan.name,
                "billing_period": period.value,
            },
        )
        self._audit(
            "subscription_started", user_id,
            subscription_id=sub.id, plan_name=plan.name, billing_period=period.value,
        )
        return SubscriptionInfo.from_model(sub)

    def activate_subscription(self, subscription_id: UUID) -> SubscriptionInfo:
        sub = self._get_subscription(subscription_id)
        self._transition(sub, SubscriptionStatus.ACTIVE)
        self.session.flush()
        return SubscriptionInfo.from_model(sub)

    def cancel_subscription(self, subscription_id: UUID) -> SubscriptionInfo:
        sub = self._get_subscription(subscription_id)
        self._transition(sub, SubscriptionStatus.CANCELLED)
        sub.auto_renew = False
        self.session.flush()
        return SubscriptionInfo.from_model(sub)

    def renew_subscription(self, subscription_id: UUID) -> SubscriptionInfo:
        """Extend by one billing period from the previous end date."""
        sub = self._get_subscription(subscription_id)
        if SubscriptionStatus(sub.status) not in (
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.EXPIRED,
        ):
            raise InvalidSubscriptionTransitionError(
                str(sub.id), sub.status, SubscriptionStatus.ACTIVE.value,
            )
        self._transition(sub, SubscriptionStatus.ACTIVE)
        sub.end_date = add_billing_period(sub.end_date, sub.billing_period)
        self.session.flush()
        logger.info(
            "subscription_renewed",
            extra={"subscription_id": str(sub.id), "end_date": sub.end_date},
        )
        self._audit(
            "subscription_renewed", sub.user_id,
            subscription_id=sub.id, end_date=sub.end_date,
        )
        return SubscriptionInfo.from_model(sub)

    def expire_lapsed_subscriptions(self, as_of: date | None = None) -> int:
        """Mark every active subscription that ended before ``as_of`` expired."""
        as_of = as_of or self._clock.today()
        result = self.session.execute(
            update(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.end_date < as_of,
            )
            .values(status=SubscriptionStatus.EXPIRED.value, updated_at=self._clock.now())
            .execution_options(synchronize_session="fetch")
        )
        expired = result.rowcount or 0
        if expired:
            logger.info(
                "subscriptions_expired",
                extra={"count": expired, "as_of": as_of},
            )
            self._audit("subscriptions_expired", count=expired, as_of=as_of)
        return expired

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _audit(self, event: str, user_id: UUID | None = None, **context: object) -> None:
        self._activity.record_system(
            "info", "subscription", event, context=context, user_id=user_id,
        )

    def _get_subscription(self, subscription_id: UUID) -> Subscription:
        sub = self.session.get(Subscription, subscription_id)
        if sub is None:
            raise SubscriptionNotFoundError(str(subscription_id))
        return sub

    def _transition(self, sub: Subscription, target: SubscriptionStatus) -> None:
        current = SubscriptionStatus(sub.status)
        if target not in SUBSCRIPTION_TRANSITIONS[current]:
            raise InvalidSubscriptionTransitionError(str(sub.id), current.value, target.value)
        sub.status = target.value
        sub.updated_at = self._clock.now()
        logger.info(
            "subscription_status_changed",
            extra={
                "subscription_id": str(sub.id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        self._audit(
            "subscription_status_changed", sub.user_id,
            subscription_id=sub.id, from_status=current.value, to_status=target.value,
        )
