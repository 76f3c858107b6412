from app.api.auth import router as auth_router, get_current_user
from app.api.chat import router as chat_router
from app.api.vote import router as vote_router
from app.api.quota import router as quota_router
from app.api.threads import router as threads_router
from app.api.billing import router as billing_router

__all__ = [
    "auth_router",
    "chat_router",
    "vote_router",
    "quota_router",
    "threads_router",
    "billing_router",
    "get_current_user",
]
