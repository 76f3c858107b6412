"""
DuelChat - Main Application Entry Point
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.config import settings
from app.core.errors import ChatServiceError, InvalidInput, chat_service_error_handler
from app.db import init_db, async_session_maker
from app.api import (
    auth_router,
    chat_router,
    vote_router,
    quota_router,
    threads_router,
    billing_router,
)

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)

# Global start time for uptime tracking
_app_start_time = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown"""
    global _app_start_time
    _app_start_time = time.time()

    print("⚔️ DuelChat starting up...")
    await init_db()
    print("✅ Database initialized")
    print(f"✅ Providers in {settings.provider_mode} mode")
    print(f"✅ Billing {'enabled (' + settings.billing_mode + ')' if settings.billing_enabled else 'disabled'}")

    yield

    print("⚔️ DuelChat shutdown complete.")


app = FastAPI(
    title=settings.app_name,
    description="Two providers answer your first message; pick one and the thread sticks with it",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ChatServiceError, chat_service_error_handler)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies use the same envelope as every other rejection"""
    return await chat_service_error_handler(request, InvalidInput(str(exc.errors())))


# Include routers
app.include_router(auth_router, prefix=settings.api_prefix)
app.include_router(chat_router, prefix=settings.api_prefix)
app.include_router(vote_router, prefix=settings.api_prefix)
app.include_router(quota_router, prefix=settings.api_prefix)
app.include_router(threads_router, prefix=settings.api_prefix)
app.include_router(billing_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "name": settings.app_name,
        "status": "healthy",
        "version": "1.0.0",
        "features": ["duels", "provider_lock", "quotas", "billing"],
    }


@app.get("/health")
async def health():
    """Detailed health check with database probe and uptime."""
    db_status = "connected"
    try:
        async with async_session_maker() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database probe failed: {e}")
        db_status = f"error: {e}"

    uptime = time.time() - _app_start_time if _app_start_time else 0

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": "1.0.0",
        "uptime_seconds": round(uptime, 1),
        "database": db_status,
        "provider_mode": settings.provider_mode,
        "billing": "enabled" if settings.billing_enabled else "disabled",
    }
