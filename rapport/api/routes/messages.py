import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rapport.api.schemas import (
    ConversationMessagesResponse,
    IngestRequest,
    IngestResponse,
    MessageCreateRequest,
    MessageResponse,
)
from rapport.database import get_db
from rapport.ingestion.pipeline import IngestionPipeline
from rapport.models import COACH_SENDER_ID, Message
from rapport.store.messages import MessageStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["messages"])

_store = MessageStore()
_pipeline: IngestionPipeline | None = None


def _get_pipeline() -> IngestionPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = IngestionPipeline()
    return _pipeline


def _to_response(message: Message) -> MessageResponse:
    return MessageResponse(
        message_id=message.message_id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        text=message.text,
        created_at=message.created_at,
    )


@router.post("/messages", response_model=MessageResponse)
async def post_message(
    request: MessageCreateRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Append a message to a conversation and index it in the background."""
    conversation = await _store.get_conversation(request.conversation_id, db)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if request.sender_id == COACH_SENDER_ID or request.sender_id not in (conversation.participants or []):
        raise HTTPException(status_code=400, detail="Sender is not a participant of this conversation")

    message = await _store.append(
        request.conversation_id,
        request.sender_id,
        request.text,
        db,
        created_at=request.created_at,
    )
    await db.commit()

    # Coach chats stay out of the index
    if not conversation.is_coach:
        background_tasks.add_task(_ingest_in_background, message.message_id)

    return _to_response(message)


async def _ingest_in_background(message_id: str):
    """Background task to index a freshly stored message."""
    from rapport.database import async_session

    try:
        async with async_session() as db:
            message = await db.get(Message, message_id)
            if message is None:
                logger.warning("Message %s vanished before indexing", message_id)
                return
            await _get_pipeline().ingest(message, db)
            await db.commit()
    except Exception:
        logger.exception("Background ingestion failed for %s", message_id)


@router.post("/messages/ingest", response_model=IngestResponse)
async def ingest_message(request: IngestRequest, db: AsyncSession = Depends(get_db)):
    """Embed, classify and index a message synchronously.

    A message_id that is already stored is indexed as stored; otherwise the
    message is appended first so every index entry has a backing message.
    """
    conversation = await _store.get_conversation(request.conversation_id, db)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if conversation.is_coach:
        raise HTTPException(status_code=400, detail="Coach conversations are not indexed")
    if request.sender_id == COACH_SENDER_ID or request.sender_id not in (conversation.participants or []):
        raise HTTPException(status_code=400, detail="Sender is not a participant of this conversation")

    message = await db.get(Message, request.message_id) if request.message_id else None
    if message is not None and message.conversation_id != request.conversation_id:
        raise HTTPException(status_code=400, detail="Message belongs to another conversation")
    if message is None and not request.text.strip():
        return IngestResponse(ok=True, indexed=False)

    try:
        if message is None:
            message = await _store.append(
                request.conversation_id,
                request.sender_id,
                request.text,
                db,
                created_at=request.created_at,
                message_id=request.message_id,
            )
        indexed = await _get_pipeline().ingest(message, db)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.exception("Ingestion failed for %s", request.message_id or "new message")
        raise HTTPException(status_code=502, detail=f"Ingestion error: {str(e)}")

    return IngestResponse(ok=True, indexed=indexed)


@router.get("/conversations/{conversation_id}/messages", response_model=ConversationMessagesResponse)
async def get_messages(
    conversation_id: str,
    limit: int | None = Query(default=None, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """Messages of a conversation, oldest first."""
    conversation = await _store.get_conversation(conversation_id, db)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    messages = await _store.read_range(conversation_id, db, limit=limit)
    return ConversationMessagesResponse(
        conversation_id=conversation_id,
        messages=[_to_response(m) for m in messages],
    )
