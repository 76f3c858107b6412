"""
Usage Ledger - monthly message quotas with a daily verified-mode sub-window.

One row per (user, calendar month). The daily verified counter rolls over
lazily: whenever the row is touched on a day other than verified_day_key,
the counter is reset to 0 before anything is checked or incremented.

reserve() must run inside the caller's transaction, next to the insert of
the message it pays for, so a failed turn rolls the charge back with it.
Increments are conditional UPDATEs guarded by the limits, so the counters
cannot overshoot even if two transactions read the same row; on PostgreSQL
the row is additionally locked with SELECT ... FOR UPDATE.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, and_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import QuotaExceeded, VerifiedQuotaExceeded, VerifiedDailyLimit
from app.db.models import UsageLedger, ChatMode
from app.services.plan_service import PlanLimits, EffectivePlan

logger = logging.getLogger(__name__)


def period_key(now: datetime) -> str:
    """Calendar-month bucket, e.g. 2024-01"""
    return now.strftime("%Y-%m")


def day_key(now: datetime) -> str:
    """Calendar-day bucket, e.g. 2024-01-31"""
    return now.strftime("%Y-%m-%d")


@dataclass
class QuotaSnapshot:
    plan: str
    subscription_status: str
    period_key: str
    messages_used: int
    verified_used: int
    verified_used_today: int
    remaining_messages: int
    remaining_verified: int
    remaining_verified_today: int


class UsageLedgerService:
    """Quota reservation and read-only quota projection for one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _select(self, user_id: str, pkey: str, lock: bool) -> Optional[UsageLedger]:
        query = select(UsageLedger).where(
            and_(UsageLedger.user_id == user_id, UsageLedger.period_key == pkey)
        )
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _get_or_create(self, user_id: str, pkey: str, dkey: str) -> UsageLedger:
        ledger = await self._select(user_id, pkey, lock=True)
        if ledger:
            return ledger

        # Concurrent first requests of the month race on the unique
        # (user_id, period_key) key; the loser's insert is a no-op.
        dialect = self.db.get_bind().dialect.name
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        await self.db.execute(
            insert_fn(UsageLedger)
            .values(
                id=str(uuid.uuid4()),
                user_id=user_id,
                period_key=pkey,
                verified_day_key=dkey,
                messages_used=0,
                verified_used=0,
                verified_used_today=0,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "period_key"])
        )
        return await self._select(user_id, pkey, lock=True)

    async def _roll_over_day(self, ledger: UsageLedger, dkey: str) -> None:
        if ledger.verified_day_key == dkey:
            return
        await self.db.execute(
            update(UsageLedger)
            .where(and_(UsageLedger.id == ledger.id, UsageLedger.verified_day_key != dkey))
            .values(verified_used_today=0, verified_day_key=dkey)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(ledger)

    @staticmethod
    def _check(ledger: UsageLedger, mode: ChatMode, limits: PlanLimits) -> None:
        if ledger.messages_used >= limits.monthly_messages:
            raise QuotaExceeded(f"{ledger.messages_used}/{limits.monthly_messages} messages used")
        if mode == ChatMode.VERIFIED:
            if ledger.verified_used >= limits.monthly_verified:
                raise VerifiedQuotaExceeded(f"{ledger.verified_used}/{limits.monthly_verified} verified used")
            if ledger.verified_used_today >= limits.daily_verified_max:
                raise VerifiedDailyLimit(
                    f"{ledger.verified_used_today}/{limits.daily_verified_max} verified used today"
                )

    async def reserve(
        self,
        user_id: str,
        mode: ChatMode,
        limits: PlanLimits,
        now: Optional[datetime] = None,
    ) -> UsageLedger:
        """
        Charge one message (and one verified use if mode is verified).

        Raises QuotaExceeded / VerifiedQuotaExceeded / VerifiedDailyLimit
        without charging anything. The caller's transaction decides whether
        the charge is committed.
        """
        now = now or datetime.utcnow()
        pkey, dkey = period_key(now), day_key(now)

        ledger = await self._get_or_create(user_id, pkey, dkey)
        await self._roll_over_day(ledger, dkey)
        self._check(ledger, mode, limits)

        conditions = [
            UsageLedger.id == ledger.id,
            UsageLedger.messages_used < limits.monthly_messages,
        ]
        values = {"messages_used": UsageLedger.messages_used + 1}
        if mode == ChatMode.VERIFIED:
            conditions += [
                UsageLedger.verified_used < limits.monthly_verified,
                UsageLedger.verified_day_key == dkey,
                UsageLedger.verified_used_today < limits.daily_verified_max,
            ]
            values["verified_used"] = UsageLedger.verified_used + 1
            values["verified_used_today"] = UsageLedger.verified_used_today + 1

        result = await self.db.execute(
            update(UsageLedger)
            .where(and_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(ledger)

        if result.rowcount != 1:
            # Lost a race between the check and the guarded increment
            self._check(ledger, mode, limits)
            raise QuotaExceeded("guarded increment matched no row")

        logger.debug(
            f"Reserved {mode.value} turn for {user_id} in {pkey}: "
            f"messages={ledger.messages_used} verified={ledger.verified_used} "
            f"today={ledger.verified_used_today}"
        )
        return ledger

    async def snapshot(
        self,
        user_id: str,
        effective: EffectivePlan,
        now: Optional[datetime] = None,
    ) -> QuotaSnapshot:
        """Remaining quota. Projects the daily rollover without writing it."""
        now = now or datetime.utcnow()
        pkey, dkey = period_key(now), day_key(now)
        limits = effective.limits

        ledger = await self._select(user_id, pkey, lock=False)
        messages_used = ledger.messages_used if ledger else 0
        verified_used = ledger.verified_used if ledger else 0
        verified_used_today = (
            ledger.verified_used_today if ledger and ledger.verified_day_key == dkey else 0
        )

        return QuotaSnapshot(
            plan=effective.plan,
            subscription_status=effective.status,
            period_key=pkey,
            messages_used=messages_used,
            verified_used=verified_used,
            verified_used_today=verified_used_today,
            remaining_messages=max(0, limits.monthly_messages - messages_used),
            remaining_verified=max(0, limits.monthly_verified - verified_used),
            remaining_verified_today=max(0, limits.daily_verified_max - verified_used_today),
        )
