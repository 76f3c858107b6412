"""Chat endpoint - one user turn, answered by a duel or by the locked provider"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import rate_limited_user
from app.db import get_db, User, ChatMode
from app.schemas import ChatRequest, ChatResponse, DuelOut, DuelSide, MessageOut, ThreadRef
from app.services.duel_service import send_turn, display_sides

router = APIRouter(prefix="/chat", tags=["Chat"])


def parse_mode(value) -> ChatMode:
    return ChatMode.VERIFIED if value == ChatMode.VERIFIED.value else ChatMode.EXPLORATION


@router.post("", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    current_user: User = Depends(rate_limited_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Send a message.

    The first message of a thread returns a duel: both providers' answers,
    placed left/right by the duel's display seed. Reply with /vote to pick
    one. Later messages return the locked provider's answer.
    """
    result = await send_turn(
        db,
        user_id=current_user.id,
        content=body.content,
        mode=parse_mode(body.mode),
        thread_id=body.thread_id,
    )
    thread = result.thread
    messages = [MessageOut.model_validate(m) for m in result.messages]

    if result.kind == "duel":
        duel = result.duel
        left, right = display_sides(duel.ui_order_seed)
        return ChatResponse(
            kind="duel",
            thread=ThreadRef(id=thread.id, title=thread.title, locked_provider=None),
            duel=DuelOut(
                id=duel.id,
                left=DuelSide(key=left.value, text=duel.option_for(left.value)),
                right=DuelSide(key=right.value, text=duel.option_for(right.value)),
            ),
            messages=messages,
        )

    return ChatResponse(
        kind="single",
        thread=ThreadRef(id=thread.id, title=thread.title, locked_provider=thread.locked_provider),
        messages=messages,
    )
