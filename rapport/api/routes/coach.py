import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rapport.api.schemas import (
    AnalyzeRequest,
    CoachReplyRequest,
    CoachReplyResponse,
    OkResponse,
    StartCoachChatRequest,
    StartCoachChatResponse,
)
from rapport.coach.service import CoachService
from rapport.database import get_db
from rapport.exceptions import InvalidRequestError, NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/coach", tags=["coach"])

_service: CoachService | None = None


def _get_service() -> CoachService:
    global _service
    if _service is None:
        _service = CoachService()
    return _service


@router.post("/start", response_model=StartCoachChatResponse)
async def start_coach_chat(request: StartCoachChatRequest, db: AsyncSession = Depends(get_db)):
    """Open (or return) the user's coach chat for a conversation."""
    try:
        coach_cid = await _get_service().start_coach_chat(
            request.user_id, request.parent_conversation_id, db
        )
        await db.commit()
    except NotFoundError as e:
        await db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRequestError as e:
        await db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return StartCoachChatResponse(coach_conversation_id=coach_cid)


@router.post("/analyze", response_model=OkResponse)
async def analyze(request: AnalyzeRequest, db: AsyncSession = Depends(get_db)):
    """Run an analysis; the result is posted into the coach chat."""
    try:
        await _get_service().analyze(
            request.kind,
            request.user_id,
            request.coach_conversation_id,
            request.parent_conversation_id,
            db,
            params=request.params,
        )
        await db.commit()
    except NotFoundError as e:
        await db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRequestError as e:
        await db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return OkResponse(ok=True)


@router.post("/reply", response_model=CoachReplyResponse)
async def reply(request: CoachReplyRequest, db: AsyncSession = Depends(get_db)):
    """Send a message to the coach and get its answer."""
    try:
        answer = await _get_service().reply(
            request.user_id,
            request.coach_conversation_id,
            request.parent_conversation_id,
            request.text,
            db,
        )
        await db.commit()
    except NotFoundError as e:
        await db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRequestError as e:
        await db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return CoachReplyResponse(reply=answer)
