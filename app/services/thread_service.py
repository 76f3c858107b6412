"""Thread and message queries shared by the chat, vote and threads endpoints"""

import logging
from typing import List, Optional

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import NotFound
from app.db.models import Thread, Message, Duel

logger = logging.getLogger(__name__)


def title_from_content(content: str) -> str:
    """Collapse whitespace and cut to the title length; empty falls back to the default."""
    collapsed = " ".join(content.split())
    return collapsed[:settings.thread_title_max_chars] or settings.default_thread_title


async def get_owned_thread(
    db: AsyncSession,
    user_id: str,
    thread_id: str,
    for_update: bool = False,
) -> Optional[Thread]:
    query = select(Thread).where(and_(Thread.id == thread_id, Thread.user_id == user_id))
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def list_threads(db: AsyncSession, user_id: str) -> List[Thread]:
    """Threads owned by the user, most recently updated first"""
    result = await db.execute(
        select(Thread)
        .where(Thread.user_id == user_id)
        .order_by(Thread.updated_at.desc())
    )
    return list(result.scalars().all())


async def create_thread(db: AsyncSession, user_id: str, title: Optional[str] = None) -> Thread:
    title = (title or "").strip()[:200] or settings.default_thread_title
    thread = Thread(user_id=user_id, title=title)
    db.add(thread)
    await db.commit()
    await db.refresh(thread)
    logger.info(f"Created thread {thread.id} for user {user_id}")
    return thread


async def delete_thread(db: AsyncSession, user_id: str, thread_id: str) -> None:
    """Delete an owned thread with its duels and messages."""
    thread = await get_owned_thread(db, user_id, thread_id, for_update=True)
    if not thread:
        raise NotFound(f"thread {thread_id}")

    # Duels reference messages, so they go first
    await db.execute(delete(Duel).where(Duel.thread_id == thread_id))
    await db.execute(delete(Message).where(Message.thread_id == thread_id))
    await db.execute(delete(Thread).where(Thread.id == thread_id))
    await db.commit()
    logger.info(f"Deleted thread {thread_id} for user {user_id}")


async def list_messages(db: AsyncSession, thread_id: str) -> List[Message]:
    """Messages in creation order; seq breaks created_at ties."""
    result = await db.execute(
        select(Message)
        .where(Message.thread_id == thread_id)
        .order_by(Message.created_at, Message.seq)
    )
    return list(result.scalars().all())
