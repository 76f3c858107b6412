from app.services.auth_service import (
    verify_password, get_password_hash, create_access_token,
    decode_access_token, authenticate_user, create_user,
    get_user_by_id, get_user_by_email
)
from app.services.rate_limiter import SlidingWindowRateLimiter, get_rate_limiter, rate_limit_key
from app.services.plan_service import (
    PLAN_LIMITS, PLAN_PRICING, PlanLimits, EffectivePlan,
    get_effective_plan, get_plan_limits,
)
from app.services.usage_ledger import UsageLedgerService, QuotaSnapshot
from app.services.provider_engine import ProviderEngine, get_provider_engine
from app.services.duel_service import send_turn, vote, TurnResult, VoteResult
from app.services.billing_service import create_order, verify_payment, verify_signature

__all__ = [
    "verify_password",
    "get_password_hash",
    "create_access_token",
    "decode_access_token",
    "authenticate_user",
    "create_user",
    "get_user_by_id",
    "get_user_by_email",
    # Rate limiting
    "SlidingWindowRateLimiter",
    "get_rate_limiter",
    "rate_limit_key",
    # Plans & quotas
    "PLAN_LIMITS",
    "PLAN_PRICING",
    "PlanLimits",
    "EffectivePlan",
    "get_effective_plan",
    "get_plan_limits",
    "UsageLedgerService",
    "QuotaSnapshot",
    # Generation & duels
    "ProviderEngine",
    "get_provider_engine",
    "send_turn",
    "vote",
    "TurnResult",
    "VoteResult",
    # Billing
    "create_order",
    "verify_payment",
    "verify_signature",
]
