"""Billing endpoints - gateway order creation and payment verification"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import rate_limited_billing_user
from app.config import settings
from app.db import get_db, User, SubscriptionStatus
from app.schemas import (
    OrderRequest, OrderOut, OrderResponse,
    VerifyRequest, VerifyResponse, SubscriptionOut,
)
from app.services.billing_service import create_order, verify_payment

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.post("/create-order", response_model=OrderResponse)
async def create_billing_order(
    body: OrderRequest,
    current_user: User = Depends(rate_limited_billing_user),
    db: AsyncSession = Depends(get_db),
):
    """Open a gateway order for one period of the requested plan"""
    payment = await create_order(db, current_user.id, body.plan)
    return OrderResponse(
        plan=payment.plan,
        order=OrderOut(id=payment.order_id, amount=payment.amount, currency=payment.currency),
        public_key=settings.billing_key_id,
    )


@router.post("/verify", response_model=VerifyResponse)
async def verify_billing_payment(
    body: VerifyRequest,
    current_user: User = Depends(rate_limited_billing_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Confirm a completed payment and extend the subscription.

    Safe to retry: a payment that was already verified returns the current
    subscription without extending it again.
    """
    subscription = await verify_payment(
        db,
        user_id=current_user.id,
        order_id=body.order_id,
        payment_id=body.payment_id,
        signature=body.signature,
        plan=body.plan,
    )
    if subscription is None:
        out = SubscriptionOut(plan=body.plan, status=SubscriptionStatus.ACTIVE.value)
    else:
        out = SubscriptionOut(
            plan=subscription.plan,
            status=subscription.status,
            current_period_end=subscription.current_period_end,
        )
    return VerifyResponse(subscription=out)
