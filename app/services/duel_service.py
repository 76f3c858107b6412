"""
Duel/Lock Orchestrator - the per-thread provider selection state machine

    unlocked ──first turn──▶ pending_duel ──vote──▶ locked(A|B)

- First user turn: both providers answer the same context concurrently and
  the two texts are stored as a Duel. No assistant message yet.
- Vote: the chosen text becomes the assistant message and the thread is
  locked to that provider for good.
- Later turns: only the locked provider answers. A later turn on a thread
  that was never voted on is rejected with thread_not_locked.

Each turn runs as one transaction: thread row lock, quota reservation,
user message, generation and the resulting Duel / assistant message either
all commit or all roll back. The unlocked -> pending_duel transition is a
compare-and-set UPDATE, so of two concurrent first turns on the same thread
only one can create a Duel; the other sees a pending thread and fails with
thread_not_locked before anything is charged.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, update, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import InvalidInput, NotFound, ThreadNotLocked
from app.db.models import (
    Thread, Message, Duel, Provider, LockState, MessageRole, ChatMode,
)
from app.services.plan_service import get_effective_plan
from app.services.provider_engine import get_provider_engine
from app.services.thread_service import get_owned_thread, list_messages, title_from_content
from app.services.usage_ledger import UsageLedgerService

logger = logging.getLogger(__name__)

# generate(provider, context, mode) -> text
Generator = Callable[[Provider, List[Dict[str, str]], ChatMode], Awaitable[str]]

UI_ORDER_SEED_MAX = 1_000_000_000


@dataclass
class TurnResult:
    kind: str  # "duel" | "single"
    thread: Thread
    messages: List[Message]
    duel: Optional[Duel] = None


@dataclass
class VoteResult:
    thread: Thread
    messages: List[Message] = field(default_factory=list)
    replayed: bool = False


def display_sides(ui_order_seed: int) -> Tuple[Provider, Provider]:
    """(left, right) providers for a duel. Even seeds put A on the left."""
    if ui_order_seed % 2 == 0:
        return Provider.A, Provider.B
    return Provider.B, Provider.A


def validate_content(content: Optional[str]) -> str:
    content = (content or "").strip()
    if not content:
        raise InvalidInput("empty message")
    if len(content) > settings.max_message_length:
        raise InvalidInput(f"message longer than {settings.max_message_length} characters")
    return content


def parse_choice(choice: Optional[str]) -> Provider:
    try:
        return Provider(choice)
    except ValueError:
        raise InvalidInput(f"invalid choice {choice!r}")


def _context(messages: List[Message]) -> List[Dict[str, str]]:
    return [{"role": m.role, "content": m.content} for m in messages]


async def _claim_first_turn(db: AsyncSession, thread: Thread, now: datetime) -> bool:
    """unlocked -> pending_duel. False if another transaction got there first."""
    result = await db.execute(
        update(Thread)
        .where(and_(Thread.id == thread.id, Thread.lock_state == LockState.UNLOCKED.value))
        .values(lock_state=LockState.PENDING_DUEL.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(thread)
    return result.rowcount == 1


async def _user_turn_count(db: AsyncSession, thread_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(Message).where(
            and_(Message.thread_id == thread_id, Message.role == MessageRole.USER.value)
        )
    )
    return result.scalar_one()


async def _generate_both(
    generate: Generator,
    context: List[Dict[str, str]],
    mode: ChatMode,
) -> Tuple[str, str]:
    """Ask A and B concurrently. If either fails the other is cancelled and awaited."""
    tasks = [
        asyncio.ensure_future(generate(Provider.A, context, mode)),
        asyncio.ensure_future(generate(Provider.B, context, mode)),
    ]
    try:
        option_a, option_b = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return option_a, option_b


async def send_turn(
    db: AsyncSession,
    user_id: str,
    content: Optional[str],
    mode: ChatMode = ChatMode.EXPLORATION,
    thread_id: Optional[str] = None,
    generator: Optional[Generator] = None,
    now: Optional[datetime] = None,
) -> TurnResult:
    """
    Take one user turn on a new or existing thread.

    Args:
        db: Session; committed on success, rolled back on any failure
        user_id: Caller
        content: Raw message text, trimmed before validation
        mode: exploration or verified
        thread_id: Existing thread, or None to start a new one
        generator: Response generator, defaults to the provider engine
        now: Clock override

    Raises:
        InvalidInput, NotFound(thread_not_found), QuotaError subclasses,
        ThreadNotLocked, GenerationFailure subclasses
    """
    content = validate_content(content)
    generate = generator or get_provider_engine().generate
    now = now or datetime.utcnow()

    try:
        if thread_id:
            thread = await get_owned_thread(db, user_id, thread_id, for_update=True)
            if not thread:
                raise NotFound(f"thread {thread_id}", code="thread_not_found")
        else:
            thread = Thread(
                user_id=user_id,
                title=settings.default_thread_title,
                lock_state=LockState.UNLOCKED.value,
                created_at=now,
            )
            db.add(thread)
            await db.flush()

        effective = await get_effective_plan(db, user_id, now)
        await UsageLedgerService(db).reserve(user_id, mode, effective.limits, now)

        # First-turn-ness is derived here, inside the same transaction as the insert
        is_first_turn = (
            thread.lock_state == LockState.UNLOCKED.value
            and await _user_turn_count(db, thread.id) == 0
            and await _claim_first_turn(db, thread, now)
        )
        if not is_first_turn and thread.lock_state != LockState.LOCKED.value:
            raise ThreadNotLocked(f"thread {thread.id} is {thread.lock_state}")

        user_message = Message(
            thread_id=thread.id,
            user_id=user_id,
            role=MessageRole.USER.value,
            content=content,
        )
        db.add(user_message)
        if is_first_turn:
            thread.title = title_from_content(content)
        thread.updated_at = now
        await db.flush()

        messages = await list_messages(db, thread.id)
        context = _context(messages)

        if is_first_turn:
            option_a, option_b = await _generate_both(generate, context, mode)
            duel = Duel(
                thread_id=thread.id,
                user_message_id=user_message.id,
                option_a=option_a,
                option_b=option_b,
                ui_order_seed=random.randrange(UI_ORDER_SEED_MAX),
            )
            db.add(duel)
            await db.commit()
            logger.info(f"Duel {duel.id} created on thread {thread.id} ({mode.value})")
            return TurnResult(kind="duel", thread=thread, messages=messages, duel=duel)

        provider = Provider(thread.locked_provider)
        text = await generate(provider, context, mode)
        assistant_message = Message(
            thread_id=thread.id,
            user_id=user_id,
            role=MessageRole.ASSISTANT.value,
            content=text,
        )
        db.add(assistant_message)
        await db.commit()
        logger.info(f"Provider {provider.value} answered on thread {thread.id} ({mode.value})")
        return TurnResult(kind="single", thread=thread, messages=messages + [assistant_message])

    except BaseException:
        # Covers cancellation too: nothing of the turn survives
        await db.rollback()
        raise


async def vote(
    db: AsyncSession,
    user_id: str,
    duel_id: Optional[str],
    choice: Optional[str],
) -> VoteResult:
    """
    Resolve a pending duel and lock its thread to the chosen provider.

    Voting again on a resolved duel, with either side, changes nothing and
    returns the thread as it stands.
    """
    if not duel_id:
        raise InvalidInput("missing duel id")
    provider = parse_choice(choice)

    try:
        result = await db.execute(
            select(Duel, Thread)
            .join(Thread, Duel.thread_id == Thread.id)
            .where(and_(Duel.id == duel_id, Thread.user_id == user_id))
            .with_for_update().execution_options(populate_existing=True)
        )
        row = result.first()
        if row is None:
            raise NotFound(f"duel {duel_id}")
        duel, thread = row

        if duel.chosen or thread.lock_state == LockState.LOCKED.value:
            messages = await list_messages(db, thread.id)
            await db.commit()
            return VoteResult(thread=thread, messages=messages, replayed=True)

        now = datetime.utcnow()
        claimed = await db.execute(
            update(Duel)
            .where(and_(Duel.id == duel.id, Duel.chosen.is_(None)))
            .values(chosen=provider.value, chosen_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            # Another vote committed between our read and this write
            await db.rollback()
            thread = await get_owned_thread(db, user_id, duel.thread_id)
            messages = await list_messages(db, duel.thread_id)
            await db.commit()
            return VoteResult(thread=thread, messages=messages, replayed=True)

        await db.execute(
            update(Thread)
            .where(and_(Thread.id == thread.id, Thread.locked_provider.is_(None)))
            .values(
                lock_state=LockState.LOCKED.value,
                locked_provider=provider.value,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.add(Message(
            thread_id=thread.id,
            user_id=user_id,
            role=MessageRole.ASSISTANT.value,
            content=duel.option_for(provider.value),
        ))
        await db.flush()
        await db.refresh(thread)
        await db.refresh(duel)

        messages = await list_messages(db, thread.id)
        await db.commit()
        logger.info(f"Thread {thread.id} locked to provider {provider.value} by duel {duel.id}")
        return VoteResult(thread=thread, messages=messages)

    except BaseException:
        await db.rollback()
        raise
