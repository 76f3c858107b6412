"""Quota endpoint"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.auth import get_current_user
from app.db import get_db, User
from app.schemas import QuotaResponse
from app.services.plan_service import get_effective_plan
from app.services.usage_ledger import UsageLedgerService

router = APIRouter(prefix="/quota", tags=["Quota"])


@router.get("", response_model=QuotaResponse)
async def get_quota(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Remaining messages for this month and verified uses for this month and today"""
    effective = await get_effective_plan(db, current_user.id)
    snapshot = await UsageLedgerService(db).snapshot(current_user.id, effective)
    return QuotaResponse(
        plan=snapshot.plan,
        subscription_status=snapshot.subscription_status,
        period_key=snapshot.period_key,
        remaining_messages=snapshot.remaining_messages,
        remaining_verified=snapshot.remaining_verified,
        remaining_verified_today=snapshot.remaining_verified_today,
    )
