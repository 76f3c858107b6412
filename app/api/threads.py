"""Thread endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.auth import get_current_user
from app.core.errors import NotFound
from app.db import get_db, User
from app.schemas import (
    ThreadCreate, ThreadOut, ThreadResponse, ThreadListResponse,
    MessageOut, MessageListResponse, OkResponse,
)
from app.services import thread_service

router = APIRouter(prefix="/threads", tags=["Threads"])


@router.get("", response_model=ThreadListResponse)
async def list_threads(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List threads, most recently active first"""
    threads = await thread_service.list_threads(db, current_user.id)
    return ThreadListResponse(threads=[ThreadOut.model_validate(t) for t in threads])


@router.post("", response_model=ThreadResponse)
async def create_thread(
    body: Optional[ThreadCreate] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    thread = await thread_service.create_thread(db, current_user.id, body.title if body else None)
    return ThreadResponse(thread=ThreadOut.model_validate(thread))


@router.delete("/{thread_id}", response_model=OkResponse)
async def delete_thread(
    thread_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete a thread with its messages and duels"""
    await thread_service.delete_thread(db, current_user.id, thread_id)
    return OkResponse()


@router.get("/{thread_id}/messages", response_model=MessageListResponse)
async def get_messages(
    thread_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    thread = await thread_service.get_owned_thread(db, current_user.id, thread_id)
    if not thread:
        raise NotFound(f"thread {thread_id}")
    messages = await thread_service.list_messages(db, thread_id)
    return MessageListResponse(messages=[MessageOut.model_validate(m) for m in messages])
