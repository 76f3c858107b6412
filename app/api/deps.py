"""Shared endpoint dependencies"""

from fastapi import Depends, Request

from app.api.auth import get_current_user
from app.core.errors import RateLimited
from app.db import User
from app.services.rate_limiter import get_rate_limiter, rate_limit_key


async def rate_limited_user(user: User = Depends(get_current_user)) -> User:
    """Authenticated user, admitted by the per-user rate limit."""
    if not get_rate_limiter().check(user.id):
        raise RateLimited(f"user {user.id}")
    return user


async def rate_limited_billing_user(
    request: Request,
    user: User = Depends(get_current_user),
) -> User:
    """Authenticated user, admitted by the per-user-and-address rate limit."""
    if not get_rate_limiter().check(rate_limit_key(request, user.id)):
        raise RateLimited(f"user {user.id}")
    return user
