"""
Structured error taxonomy for the chat core.

Every failure the core can report is a ChatServiceError subclass with a
stable snake_case ``code`` and an HTTP status. The exception handler in
``app.main`` turns them into ``{"ok": false, "error": code}`` responses.

Usage:
    from app.core.errors import QuotaExceeded
    raise QuotaExceeded()
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ChatServiceError(Exception):
    """Base error. ``detail`` is internal-only and never sent to clients."""

    code: str = "internal_error"
    http_status: int = 500

    def __init__(self, detail: Optional[str] = None, *, code: Optional[str] = None):
        if code:
            self.code = code
        self.detail = detail
        super().__init__(f"{self.code}: {detail}" if detail else self.code)


class Unauthorized(ChatServiceError):
    code = "unauthorized"
    http_status = 401


class InvalidInput(ChatServiceError):
    code = "invalid_input"
    http_status = 400


class RateLimited(ChatServiceError):
    code = "rate_limited"
    http_status = 429


class QuotaError(ChatServiceError):
    """A usage ceiling was hit. Nothing was charged."""
    http_status = 403


class QuotaExceeded(QuotaError):
    code = "quota_exceeded"


class VerifiedQuotaExceeded(QuotaError):
    code = "verified_quota_exceeded"


class VerifiedDailyLimit(QuotaError):
    code = "verified_daily_limit"


class NotFound(ChatServiceError):
    code = "not_found"
    http_status = 404


class ThreadNotLocked(ChatServiceError):
    """A follow-up turn arrived before the thread's duel was voted on."""
    code = "thread_not_locked"
    http_status = 400


class GenerationFailure(ChatServiceError):
    code = "provider_error"
    http_status = 502


class ProviderNotConfigured(GenerationFailure):
    code = "provider_not_configured"
    http_status = 400


class ProviderError(GenerationFailure):
    code = "provider_error"
    http_status = 502

    def __init__(self, detail: Optional[str] = None, *, reason: str = "upstream_error"):
        self.reason = reason  # upstream_error | timeout
        super().__init__(detail or reason)


class PaymentVerificationFailed(ChatServiceError):
    code = "payment_verification_failed"
    http_status = 400


class PaymentNotFound(ChatServiceError):
    code = "payment_not_found"
    http_status = 404


class BillingNotConfigured(ChatServiceError):
    code = "billing_not_configured"
    http_status = 400


class BillingError(ChatServiceError):
    code = "billing_error"
    http_status = 502


async def chat_service_error_handler(request: Request, exc: ChatServiceError) -> JSONResponse:
    """Render a ChatServiceError as the public error envelope."""
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(
        status_code=exc.http_status,
        content={"ok": False, "error": exc.code},
        headers=headers,
    )
