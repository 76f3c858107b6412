"""
Billing - gateway orders, payment signature checks and subscription renewal.

The gateway (Razorpay-style) signs ``"{order_id}|{payment_id}"`` with
HMAC-SHA256 using the key secret. A payment's order_id is its idempotency
key: a verified payment is applied to the subscription exactly once, and
renewals stack end to end so time paid for before expiry is never lost.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx
from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import (
    BillingError, BillingNotConfigured, InvalidInput,
    PaymentNotFound, PaymentVerificationFailed,
)
from app.db.models import Payment, PaymentStatus, Subscription, SubscriptionStatus
from app.services.plan_service import PLAN_PRICING, find_covering_subscription, parse_plan

logger = logging.getLogger(__name__)


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Constant-time check of the gateway's hex HMAC over order_id|payment_id."""
    expected = hmac.new(
        secret.encode("utf-8"),
        f"{order_id}|{payment_id}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected.encode("utf-8"), (signature or "").encode("utf-8"))


def require_billing() -> None:
    if not settings.billing_enabled:
        raise BillingNotConfigured()


def require_plan(value: Optional[str]) -> str:
    plan = parse_plan(value)
    if not plan:
        raise InvalidInput(f"unknown plan {value!r}")
    return plan


async def create_order(
    db: AsyncSession,
    user_id: str,
    plan: Optional[str],
    http_client: Optional[httpx.AsyncClient] = None,
) -> Payment:
    """
    Create a gateway order for one billing period of ``plan`` and record it
    as a ``created`` Payment.
    """
    require_billing()
    plan = require_plan(plan)
    amount = PLAN_PRICING[plan]

    payload = {
        "amount": amount,
        "currency": settings.billing_currency,
        "payment_capture": 1,
        "notes": {"userId": user_id, "plan": plan, "mode": settings.billing_mode},
    }
    auth = (settings.billing_key_id, settings.billing_key_secret)

    try:
        if http_client is not None:
            r = await http_client.post(settings.billing_api_url, json=payload, auth=auth)
        else:
            async with httpx.AsyncClient(timeout=settings.billing_timeout_seconds) as client:
                r = await client.post(settings.billing_api_url, json=payload, auth=auth)
    except httpx.HTTPError as e:
        logger.error(f"Order creation failed for {user_id}: {e}")
        raise BillingError(str(e)) from e

    if r.status_code >= 400:
        logger.error(f"Gateway rejected order for {user_id}: HTTP {r.status_code}")
        raise BillingError(f"gateway returned {r.status_code}")

    order = r.json()
    order_id = order.get("id")
    if not order_id:
        raise BillingError("gateway order has no id")

    payment = Payment(
        user_id=user_id,
        plan=plan,
        amount=int(order.get("amount", amount)),
        currency=order.get("currency", settings.billing_currency),
        order_id=order_id,
        status=PaymentStatus.CREATED.value,
    )
    db.add(payment)
    await db.commit()
    await db.refresh(payment)
    logger.info(f"Created order {order_id} ({plan}, {payment.amount} {payment.currency}) for {user_id}")
    return payment


async def mark_payment_failed(db: AsyncSession, user_id: str, order_id: str) -> None:
    """Flag the user's unverified payment for this order as failed."""
    await db.execute(
        update(Payment)
        .where(
            and_(
                Payment.order_id == order_id,
                Payment.user_id == user_id,
                Payment.status != PaymentStatus.VERIFIED.value,
            )
        )
        .values(status=PaymentStatus.FAILED.value, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def _latest_active_subscription(db: AsyncSession, user_id: str) -> Optional[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(
            and_(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
            )
        )
        .order_by(Subscription.current_period_end.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def apply_verified_payment(
    db: AsyncSession,
    payment: Payment,
    payment_id: str,
    plan: str,
    now: Optional[datetime] = None,
) -> Optional[Subscription]:
    """
    Turn an authenticated payment into subscription time.

    Must run in the transaction that locked ``payment``. Does not commit.
    An already verified payment returns the current subscription untouched.
    """
    if payment.status == PaymentStatus.VERIFIED.value:
        return await _latest_active_subscription(db, payment.user_id)

    now = now or datetime.utcnow()
    payment.status = PaymentStatus.VERIFIED.value
    payment.payment_id = payment_id
    payment.updated_at = now

    current = await find_covering_subscription(db, payment.user_id, now, for_update=True)
    base = current.current_period_end if current and current.current_period_end > now else now
    new_end = base + timedelta(days=settings.period_days)

    if current:
        current.plan = plan
        current.status = SubscriptionStatus.ACTIVE.value
        current.current_period_start = now
        current.current_period_end = new_end
        subscription = current
    else:
        subscription = Subscription(
            user_id=payment.user_id,
            plan=plan,
            status=SubscriptionStatus.ACTIVE.value,
            current_period_start=now,
            current_period_end=new_end,
        )
        db.add(subscription)

    await db.flush()
    logger.info(
        f"Payment {payment.order_id} renewed {plan} for {payment.user_id} until {new_end.isoformat()}"
    )
    return subscription


async def verify_payment(
    db: AsyncSession,
    user_id: str,
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
    plan: Optional[str],
    now: Optional[datetime] = None,
) -> Optional[Subscription]:
    """
    Verify a gateway callback and apply the renewal idempotently.

    Raises:
        BillingNotConfigured, InvalidInput, PaymentVerificationFailed,
        PaymentNotFound
    """
    require_billing()
    plan = require_plan(plan)
    if not (order_id and payment_id and signature):
        raise InvalidInput("order id, payment id and signature are required")

    if not verify_signature(order_id, payment_id, signature, settings.billing_key_secret):
        logger.warning(f"Signature mismatch for order {order_id} (user {user_id})")
        await mark_payment_failed(db, user_id, order_id)
        raise PaymentVerificationFailed(f"order {order_id}")

    try:
        result = await db.execute(
            select(Payment)
            .where(and_(Payment.order_id == order_id, Payment.user_id == user_id))
            .with_for_update().execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise PaymentNotFound(f"order {order_id}")
        if payment.plan != plan:
            # The signature covers order and payment ids only; the plan comes from the order
            logger.warning(f"Plan mismatch for order {order_id}: paid {payment.plan}, asked {plan}")
            raise InvalidInput(f"order {order_id} was created for plan {payment.plan}")

        subscription = await apply_verified_payment(db, payment, payment_id, plan, now)
        await db.commit()
        return subscription
    except BaseException:
        await db.rollback()
        raise
