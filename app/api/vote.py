"""Vote endpoint - resolves a duel and locks its thread"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import rate_limited_user
from app.db import get_db, User
from app.schemas import VoteRequest, VoteResponse, VoteThread, MessageOut
from app.services.duel_service import vote

router = APIRouter(prefix="/vote", tags=["Chat"])


@router.post("", response_model=VoteResponse)
async def vote_on_duel(
    body: VoteRequest,
    current_user: User = Depends(rate_limited_user),
    db: AsyncSession = Depends(get_db),
):
    """Pick side A or B of a duel. Repeating a vote returns the first outcome."""
    result = await vote(db, current_user.id, body.duel_id, body.choice)
    return VoteResponse(
        thread=VoteThread(id=result.thread.id, locked_provider=result.thread.locked_provider),
        messages=[MessageOut.model_validate(m) for m in result.messages],
    )
