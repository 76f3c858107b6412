from app.db.models import (
    Base, User, Thread, Message, Duel, UsageLedger, Subscription, Payment,
    Provider, LockState, MessageRole, ChatMode, SubscriptionStatus, PaymentStatus,
)
from app.db.database import get_db, init_db, drop_db, async_session_maker, engine

__all__ = [
    "Base",
    "User",
    "Thread",
    "Message",
    "Duel",
    "UsageLedger",
    "Subscription",
    "Payment",
    # Enums
    "Provider",
    "LockState",
    "MessageRole",
    "ChatMode",
    "SubscriptionStatus",
    "PaymentStatus",
    # Database
    "get_db",
    "init_db",
    "drop_db",
    "async_session_maker",
    "engine",
]
