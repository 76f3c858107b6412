"""
Plan resolution - maps a user to an effective plan and its quota limits.

Re-derived on every request; never cached across requests.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.models import Subscription, SubscriptionStatus


@dataclass(frozen=True)
class PlanLimits:
    monthly_messages: int
    monthly_verified: int
    daily_verified_max: int


PLAN_LIMITS = {
    "A1": PlanLimits(monthly_messages=400, monthly_verified=15, daily_verified_max=2),
    "A2": PlanLimits(monthly_messages=900, monthly_verified=45, daily_verified_max=2),
}

# Price per billing period, in currency minor units
PLAN_PRICING = {
    "A1": 9900,
    "A2": 19900,
}


@dataclass(frozen=True)
class EffectivePlan:
    plan: str
    status: str  # "active" | "inactive"

    @property
    def limits(self) -> PlanLimits:
        return get_plan_limits(self.plan)


def get_plan_limits(plan: str) -> PlanLimits:
    return PLAN_LIMITS[plan]


def parse_plan(value: Optional[str]) -> Optional[str]:
    """Return the plan key if valid, else None."""
    return value if value in PLAN_LIMITS else None


async def find_covering_subscription(
    db: AsyncSession,
    user_id: str,
    now: datetime,
    for_update: bool = False,
) -> Optional[Subscription]:
    """Active subscription whose period still covers ``now``, latest end first."""
    query = (
        select(Subscription)
        .where(
            and_(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.current_period_end >= now,
            )
        )
        .order_by(Subscription.current_period_end.desc())
        .limit(1)
    )
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_effective_plan(
    db: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> EffectivePlan:
    """Plan of the covering active subscription, or the default plan (inactive)."""
    now = now or datetime.utcnow()
    subscription = await find_covering_subscription(db, user_id, now)
    if subscription:
        return EffectivePlan(plan=subscription.plan, status=SubscriptionStatus.ACTIVE.value)
    return EffectivePlan(plan=settings.default_plan, status=SubscriptionStatus.INACTIVE.value)
