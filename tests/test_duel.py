"""
Tests for the Duel/Lock Orchestrator

First turn -> duel, vote -> lock, later turns -> locked provider only,
and every failure leaves quota and thread state untouched.
"""

import asyncio

import pytest
import pytest_asyncio
from datetime import datetime

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    InvalidInput, NotFound, ProviderError, ProviderNotConfigured,
    QuotaExceeded, ThreadNotLocked, VerifiedDailyLimit,
)
from app.db import init_db, drop_db, async_session_maker
from app.db.models import (
    Duel, Message, Thread, UsageLedger, ChatMode, LockState, MessageRole, Provider,
)
from app.services import create_user
from app.services.duel_service import send_turn, vote, display_sides
from app.services.plan_service import PLAN_LIMITS
from app.services.usage_ledger import period_key


class FakeGenerator:
    """Records calls; answers with provider-tagged text or fails on demand."""

    def __init__(self, fail_for=(), error=None):
        self.calls = []
        self.fail_for = set(fail_for)
        self.error = error or ProviderError("upstream down")

    async def __call__(self, key: Provider, messages, mode: ChatMode) -> str:
        self.calls.append(key)
        if key in self.fail_for:
            raise self.error
        return f"[{key.value}/{mode.value}] reply to: {messages[-1]['content']}"


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create a fresh database for each test"""
    await init_db()
    yield
    await drop_db()


@pytest_asyncio.fixture
async def db_session():
    """Get a database session"""
    async with async_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession):
    return await create_user(db_session, email="duel@example.com", password="testpassword123")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession):
    return await create_user(db_session, email="other@example.com", password="testpassword123")


@pytest.fixture
def generator():
    return FakeGenerator()


async def _count(db: AsyncSession, model, *where) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar_one()


async def _messages_used(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        select(UsageLedger.messages_used)
        .where(UsageLedger.user_id == user_id, UsageLedger.period_key == period_key(datetime.utcnow()))
    )
    return result.scalar_one_or_none() or 0


async def _first_turn(db, user, generator, content="Hello"):
    return await send_turn(db, user.id, content, ChatMode.EXPLORATION, generator=generator)


# ============ First turn ============

@pytest.mark.asyncio
async def test_first_turn_creates_duel(db_session, test_user, generator):
    result = await _first_turn(db_session, test_user, generator)

    assert result.kind == "duel"
    assert set(generator.calls) == {Provider.A, Provider.B}
    assert result.duel.chosen is None
    assert result.duel.option_a != result.duel.option_b
    assert result.duel.option_a.startswith("[A/exploration]")
    assert 0 <= result.duel.ui_order_seed < 1_000_000_000

    assert result.thread.locked_provider is None
    assert result.thread.lock_state == LockState.PENDING_DUEL.value
    assert result.thread.title == "Hello"

    # Only the user message exists until a vote
    assert [m.role for m in result.messages] == ["user"]
    assert result.duel.user_message_id == result.messages[0].id
    assert await _messages_used(db_session, test_user.id) == 1


@pytest.mark.asyncio
async def test_first_turn_on_explicit_thread(db_session, test_user, generator):
    thread = Thread(user_id=test_user.id, title="New chat")
    db_session.add(thread)
    await db_session.commit()

    result = await send_turn(
        db_session, test_user.id, "  Plan   a\ntrip to   Goa  ",
        thread_id=thread.id, generator=generator,
    )
    assert result.kind == "duel"
    assert result.thread.id == thread.id
    assert result.thread.title == "Plan a trip to Goa"
    assert result.messages[0].content == "Plan   a\ntrip to   Goa"


@pytest.mark.asyncio
async def test_title_is_truncated(db_session, test_user, generator):
    result = await _first_turn(db_session, test_user, generator, content="x" * 100)
    assert result.thread.title == "x" * 40


def test_display_sides_follow_seed_parity():
    assert display_sides(0) == (Provider.A, Provider.B)
    assert display_sides(42) == (Provider.A, Provider.B)
    assert display_sides(7) == (Provider.B, Provider.A)


# ============ Vote ============

@pytest.mark.asyncio
async def test_vote_locks_thread(db_session, test_user, generator):
    turn = await _first_turn(db_session, test_user, generator)

    result = await vote(db_session, test_user.id, turn.duel.id, "A")

    assert result.replayed is False
    assert result.thread.locked_provider == "A"
    assert result.thread.lock_state == LockState.LOCKED.value
    assert [m.role for m in result.messages] == ["user", "assistant"]
    assert result.messages[1].content == turn.duel.option_a

    duel = (await db_session.execute(select(Duel).where(Duel.id == turn.duel.id))).scalar_one()
    await db_session.refresh(duel)
    assert duel.chosen == "A"
    assert duel.chosen_at is not None

    # No generation happens on vote
    assert len(generator.calls) == 2


@pytest.mark.asyncio
async def test_vote_b_uses_option_b(db_session, test_user, generator):
    turn = await _first_turn(db_session, test_user, generator)

    result = await vote(db_session, test_user.id, turn.duel.id, "B")

    assert result.thread.locked_provider == "B"
    assert result.messages[-1].content == turn.duel.option_b


@pytest.mark.asyncio
async def test_vote_is_idempotent(db_session, test_user, generator):
    turn = await _first_turn(db_session, test_user, generator)
    first = await vote(db_session, test_user.id, turn.duel.id, "A")

    second = await vote(db_session, test_user.id, turn.duel.id, "B")

    assert second.replayed is True
    assert second.thread.locked_provider == "A"
    assert [m.id for m in second.messages] == [m.id for m in first.messages]
    assert await _count(db_session, Message, Message.role == "assistant") == 1


@pytest.mark.asyncio
async def test_vote_validation(db_session, test_user, generator):
    turn = await _first_turn(db_session, test_user, generator)

    with pytest.raises(InvalidInput):
        await vote(db_session, test_user.id, turn.duel.id, "C")
    with pytest.raises(InvalidInput):
        await vote(db_session, test_user.id, "", "A")
    with pytest.raises(NotFound):
        await vote(db_session, test_user.id, "no-such-duel", "A")


@pytest.mark.asyncio
async def test_vote_on_someone_elses_duel(db_session, test_user, other_user, generator):
    turn = await _first_turn(db_session, test_user, generator)

    with pytest.raises(NotFound) as exc_info:
        await vote(db_session, other_user.id, turn.duel.id, "A")
    assert exc_info.value.code == "not_found"

    await db_session.refresh(turn.thread)
    assert turn.thread.locked_provider is None


# ============ Later turns ============

@pytest.mark.asyncio
async def test_follow_up_goes_to_locked_provider(db_session, test_user, generator):
    turn = await _first_turn(db_session, test_user, generator)
    await vote(db_session, test_user.id, turn.duel.id, "B")
    generator.calls.clear()

    result = await send_turn(
        db_session, test_user.id, "Follow-up", thread_id=turn.thread.id, generator=generator,
    )

    assert result.kind == "single"
    assert result.duel is None
    assert generator.calls == [Provider.B]
    assert [m.role for m in result.messages] == ["user", "assistant", "user", "assistant"]
    assert result.messages[-1].content == "[B/exploration] reply to: Follow-up"
    assert result.thread.title == "Hello"
    assert await _count(db_session, Duel) == 1
    assert await _messages_used(db_session, test_user.id) == 2


@pytest.mark.asyncio
async def test_second_turn_before_vote_is_rejected(db_session, test_user, generator):
    turn = await _first_turn(db_session, test_user, generator)

    with pytest.raises(ThreadNotLocked):
        await send_turn(
            db_session, test_user.id, "Again", thread_id=turn.thread.id, generator=generator,
        )

    assert await _count(db_session, Duel) == 1
    assert await _count(db_session, Message) == 1
    assert await _messages_used(db_session, test_user.id) == 1
    assert len(generator.calls) == 2


@pytest.mark.asyncio
async def test_unknown_thread(db_session, test_user, other_user, generator):
    with pytest.raises(NotFound) as exc_info:
        await send_turn(db_session, test_user.id, "Hi", thread_id="missing", generator=generator)
    assert exc_info.value.code == "thread_not_found"

    turn = await _first_turn(db_session, other_user, generator)
    with pytest.raises(NotFound):
        await send_turn(db_session, test_user.id, "Hi", thread_id=turn.thread.id, generator=generator)
    assert await _messages_used(db_session, test_user.id) == 0


# ============ Failures ============

@pytest.mark.asyncio
async def test_duel_generation_failure_rolls_back(db_session, test_user):
    generator = FakeGenerator(fail_for={Provider.B})

    with pytest.raises(ProviderError):
        await _first_turn(db_session, test_user, generator)

    assert await _count(db_session, Thread) == 0
    assert await _count(db_session, Message) == 0
    assert await _count(db_session, Duel) == 0
    assert await _messages_used(db_session, test_user.id) == 0


@pytest.mark.asyncio
async def test_locked_turn_failure_rolls_back(db_session, test_user, generator):
    turn = await _first_turn(db_session, test_user, generator)
    await vote(db_session, test_user.id, turn.duel.id, "A")

    failing = FakeGenerator(fail_for={Provider.A}, error=ProviderNotConfigured())
    with pytest.raises(ProviderNotConfigured):
        await send_turn(db_session, test_user.id, "More", thread_id=turn.thread.id, generator=failing)

    assert await _count(db_session, Message) == 2
    assert await _messages_used(db_session, test_user.id) == 1


@pytest.mark.asyncio
async def test_failed_first_turn_on_existing_thread_can_be_retried(db_session, test_user):
    thread = Thread(user_id=test_user.id, title="New chat")
    db_session.add(thread)
    await db_session.commit()

    with pytest.raises(ProviderError):
        await send_turn(
            db_session, test_user.id, "Hello", thread_id=thread.id,
            generator=FakeGenerator(fail_for={Provider.A}),
        )

    result = await send_turn(
        db_session, test_user.id, "Hello", thread_id=thread.id, generator=FakeGenerator(),
    )
    assert result.kind == "duel"


# ============ Validation & quota ============

@pytest.mark.asyncio
async def test_invalid_content(db_session, test_user, generator):
    with pytest.raises(InvalidInput):
        await send_turn(db_session, test_user.id, "   ", generator=generator)
    with pytest.raises(InvalidInput):
        await send_turn(db_session, test_user.id, None, generator=generator)
    with pytest.raises(InvalidInput):
        await send_turn(db_session, test_user.id, "x" * 8001, generator=generator)

    assert generator.calls == []
    assert await _count(db_session, Thread) == 0


@pytest.mark.asyncio
async def test_quota_exceeded_leaves_state_unchanged(db_session, test_user, generator):
    now = datetime.utcnow()
    db_session.add(UsageLedger(
        user_id=test_user.id,
        period_key=period_key(now),
        verified_day_key=now.strftime("%Y-%m-%d"),
        messages_used=PLAN_LIMITS["A1"].monthly_messages,
        verified_used=0,
        verified_used_today=0,
    ))
    await db_session.commit()

    with pytest.raises(QuotaExceeded):
        await _first_turn(db_session, test_user, generator)

    assert generator.calls == []
    assert await _count(db_session, Thread) == 0
    assert await _count(db_session, Message) == 0
    assert await _messages_used(db_session, test_user.id) == PLAN_LIMITS["A1"].monthly_messages


@pytest.mark.asyncio
async def test_verified_turns_hit_daily_limit(db_session, test_user, generator):
    turn = await send_turn(db_session, test_user.id, "Q1", ChatMode.VERIFIED, generator=generator)
    await vote(db_session, test_user.id, turn.duel.id, "A")
    await send_turn(
        db_session, test_user.id, "Q2", ChatMode.VERIFIED,
        thread_id=turn.thread.id, generator=generator,
    )

    with pytest.raises(VerifiedDailyLimit):
        await send_turn(
            db_session, test_user.id, "Q3", ChatMode.VERIFIED,
            thread_id=turn.thread.id, generator=generator,
        )

    # Exploration still goes through
    result = await send_turn(
        db_session, test_user.id, "Q3", ChatMode.EXPLORATION,
        thread_id=turn.thread.id, generator=generator,
    )
    assert result.kind == "single"
    assert await _messages_used(db_session, test_user.id) == 3


@pytest.mark.asyncio
async def test_duel_failure_cancels_the_other_provider(db_session, test_user):
    class OneFailsOneHangs:
        cancelled = False

        async def __call__(self, key, messages, mode):
            if key == Provider.A:
                await asyncio.sleep(0.01)
                raise ProviderError("upstream down")
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
            return "late"

    generator = OneFailsOneHangs()
    with pytest.raises(ProviderError):
        await asyncio.wait_for(_first_turn(db_session, test_user, generator), timeout=5)

    assert generator.cancelled
    assert await _count(db_session, Duel) == 0


# ============ Concurrency ============

class SlowGenerator(FakeGenerator):
    """Answers after ``delay``; fails turns whose last message is ``fail_on``."""

    def __init__(self, delay: float, fail_on: str = None):
        super().__init__()
        self.delay = delay
        self.fail_on = fail_on

    async def __call__(self, key: Provider, messages, mode: ChatMode) -> str:
        await asyncio.sleep(self.delay)
        if self.fail_on is not None and messages[-1]["content"] == self.fail_on:
            raise ProviderError("upstream down")
        return await super().__call__(key, messages, mode)


async def _turn_in_own_session(user_id, content, generator, thread_id=None):
    async with async_session_maker() as session:
        return await send_turn(
            session, user_id, content, ChatMode.EXPLORATION, thread_id=thread_id, generator=generator,
        )


async def _vote_in_own_session(user_id, duel_id, choice):
    async with async_session_maker() as session:
        return await vote(session, user_id, duel_id, choice)


async def _user_messages(db: AsyncSession):
    result = await db.execute(
        select(Message.content).where(Message.role == MessageRole.USER.value).order_by(Message.seq)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_concurrent_turns_failure_is_isolated(db_session, test_user):
    # On SQLite an open read transaction holds the write lock
    await db_session.commit()
    generator = SlowGenerator(delay=0.05, fail_on="fails")

    results = await asyncio.gather(
        _turn_in_own_session(test_user.id, "fails", generator),
        _turn_in_own_session(test_user.id, "works", generator),
        return_exceptions=True,
    )

    assert isinstance(results[0], ProviderError)
    assert results[1].kind == "duel"

    assert await _messages_used(db_session, test_user.id) == 1
    assert await _user_messages(db_session) == ["works"]
    assert await _count(db_session, Thread) == 1
    assert await _count(db_session, Duel) == 1
    lock_state = await db_session.execute(select(Thread.lock_state))
    assert lock_state.scalar_one() == LockState.PENDING_DUEL.value


@pytest.mark.asyncio
async def test_concurrent_first_turns_on_one_thread(db_session, test_user):
    thread = Thread(user_id=test_user.id, title="New chat")
    db_session.add(thread)
    await db_session.commit()

    generator = SlowGenerator(delay=0.05)
    results = await asyncio.gather(
        _turn_in_own_session(test_user.id, "one", generator, thread_id=thread.id),
        _turn_in_own_session(test_user.id, "two", generator, thread_id=thread.id),
        return_exceptions=True,
    )

    duels = [r for r in results if not isinstance(r, BaseException)]
    errors = [r for r in results if isinstance(r, BaseException)]
    assert len(duels) == 1 and duels[0].kind == "duel"
    assert len(errors) == 1 and isinstance(errors[0], ThreadNotLocked)

    assert await _messages_used(db_session, test_user.id) == 1
    assert len(await _user_messages(db_session)) == 1
    assert await _count(db_session, Duel) == 1
    lock_state = await db_session.execute(select(Thread.lock_state).where(Thread.id == thread.id))
    assert lock_state.scalar_one() == LockState.PENDING_DUEL.value


@pytest.mark.asyncio
async def test_concurrent_turns_never_exceed_monthly_limit(db_session, test_user):
    limit = PLAN_LIMITS["A1"].monthly_messages
    now = datetime.utcnow()
    db_session.add(UsageLedger(
        user_id=test_user.id,
        period_key=period_key(now),
        verified_day_key=now.strftime("%Y-%m-%d"),
        messages_used=limit - 2,
        verified_used=0,
        verified_used_today=0,
    ))
    await db_session.commit()

    generator = SlowGenerator(delay=0.01)
    results = await asyncio.gather(
        *[_turn_in_own_session(test_user.id, f"turn {i}", generator) for i in range(5)],
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, BaseException)]
    rejected = [r for r in results if isinstance(r, BaseException)]
    assert len(succeeded) == 2
    assert len(rejected) == 3
    assert all(isinstance(r, QuotaExceeded) for r in rejected)

    assert await _messages_used(db_session, test_user.id) == limit
    assert await _count(db_session, Thread) == 2
    assert await _count(db_session, Duel) == 2


@pytest.mark.asyncio
async def test_concurrent_votes_lock_once(db_session, test_user, generator):
    turn = await _first_turn(db_session, test_user, generator)

    first, second = await asyncio.gather(
        _vote_in_own_session(test_user.id, turn.duel.id, "A"),
        _vote_in_own_session(test_user.id, turn.duel.id, "B"),
    )

    assert sorted([first.replayed, second.replayed]) == [False, True]
    assert [m.id for m in first.messages] == [m.id for m in second.messages]
    assert first.thread.locked_provider == second.thread.locked_provider
    assert await _count(db_session, Message, Message.role == MessageRole.ASSISTANT.value) == 1

    winner = first.thread.locked_provider
    chosen = await db_session.execute(select(Duel.chosen).where(Duel.id == turn.duel.id))
    assert chosen.scalar_one() == winner
