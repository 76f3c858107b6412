"""
Database models for DuelChat

- Users own threads, payments, subscriptions and one usage ledger per month
- Threads carry the duel/lock state machine (lock_state + locked_provider)
- Duels hold both generated candidates for a thread's first turn
- Usage ledgers meter monthly and daily quotas per billing period
"""

from datetime import datetime
from typing import Optional, List
from enum import Enum
import uuid

from sqlalchemy import (
    String, Text, DateTime, Integer, Boolean,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.ext.declarative import declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Provider(str, Enum):
    """Response providers a thread can be locked to"""
    A = "A"
    B = "B"


class LockState(str, Enum):
    """
    Thread lock state machine.

    unlocked ──first turn──▶ pending_duel ──vote──▶ locked
    """
    UNLOCKED = "unlocked"           # No user turn yet
    PENDING_DUEL = "pending_duel"   # First turn taken, duel awaiting a vote
    LOCKED = "locked"               # Committed to locked_provider for good


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatMode(str, Enum):
    EXPLORATION = "exploration"
    VERIFIED = "verified"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class PaymentStatus(str, Enum):
    CREATED = "created"
    VERIFIED = "verified"
    FAILED = "failed"


class User(Base):
    """Identity anchor"""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    name: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    threads: Mapped[List["Thread"]] = relationship(
        "Thread", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class Thread(Base):
    """A conversation that picks, then commits to, one provider"""
    __tablename__ = "threads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(200), default="New chat")

    # Lock state machine; locked_provider is set exactly once, by a vote
    lock_state: Mapped[str] = mapped_column(String(20), default=LockState.UNLOCKED.value)
    locked_provider: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped["User"] = relationship("User", back_populates="threads")
    messages: Mapped[List["Message"]] = relationship(
        "Message", back_populates="thread", order_by="Message.seq",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    duels: Mapped[List["Duel"]] = relationship(
        "Duel", back_populates="thread", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_threads_user_updated", "user_id", "updated_at"),
    )


class Message(Base):
    """Append-only message in a thread"""
    __tablename__ = "messages"

    # Autoincrement seq keeps ordering stable when created_at ties
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, default=_uuid)
    thread_id: Mapped[str] = mapped_column(String(36), ForeignKey("threads.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"))
    role: Mapped[str] = mapped_column(String(20))  # "user" | "assistant"
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    thread: Mapped["Thread"] = relationship("Thread", back_populates="messages")

    __table_args__ = (
        Index("ix_messages_thread_role", "thread_id", "role"),
    )


class Duel(Base):
    """Two full candidate responses for a thread's first turn"""
    __tablename__ = "duels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    thread_id: Mapped[str] = mapped_column(String(36), ForeignKey("threads.id", ondelete="CASCADE"), index=True)
    user_message_id: Mapped[str] = mapped_column(String(36), ForeignKey("messages.id", ondelete="CASCADE"))
    option_a: Mapped[str] = mapped_column(Text)
    option_b: Mapped[str] = mapped_column(Text)
    ui_order_seed: Mapped[int] = mapped_column(Integer)  # Display side only, even → A on the left
    chosen: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)  # None until voted, then immutable
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    chosen_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    thread: Mapped["Thread"] = relationship("Thread", back_populates="duels")

    def option_for(self, provider: str) -> str:
        return self.option_a if provider == Provider.A.value else self.option_b


class UsageLedger(Base):
    """Per-user, per-month quota counters with a per-day verified sub-counter"""
    __tablename__ = "usage_ledgers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    period_key: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM
    messages_used: Mapped[int] = mapped_column(Integer, default=0)
    verified_used: Mapped[int] = mapped_column(Integer, default=0)
    verified_used_today: Mapped[int] = mapped_column(Integer, default=0)
    verified_day_key: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "period_key", name="uq_usage_ledger_user_period"),
    )


class Subscription(Base):
    """A paid billing period; at most one active+covering row per user"""
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    plan: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=SubscriptionStatus.ACTIVE.value)
    current_period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_subscriptions_user_status_end", "user_id", "status", "current_period_end"),
    )


class Payment(Base):
    """One renewal attempt; order_id is the idempotency key"""
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # Minor units (paise / cents)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.CREATED.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
