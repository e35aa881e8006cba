from datetime import datetime

from pydantic import BaseModel, Field


# --- Message Schemas ---


class MessageCreateRequest(BaseModel):
    conversation_id: str
    sender_id: str
    text: str = Field(min_length=1)
    created_at: datetime | None = None


class MessageResponse(BaseModel):
    message_id: str
    conversation_id: str
    sender_id: str
    text: str
    created_at: datetime | None = None


class ConversationMessagesResponse(BaseModel):
    conversation_id: str
    messages: list[MessageResponse]


class IngestRequest(BaseModel):
    message_id: str | None = None
    conversation_id: str
    sender_id: str
    text: str = ""
    created_at: datetime | None = None


class IngestResponse(BaseModel):
    ok: bool = True
    indexed: bool = False


# --- Coach Schemas ---


class StartCoachChatRequest(BaseModel):
    user_id: str
    parent_conversation_id: str


class StartCoachChatResponse(BaseModel):
    coach_conversation_id: str


class AnalyzeRequest(BaseModel):
    user_id: str
    kind: str
    coach_conversation_id: str
    parent_conversation_id: str
    params: dict = {}


class CoachReplyRequest(BaseModel):
    user_id: str
    coach_conversation_id: str
    parent_conversation_id: str
    text: str


class CoachReplyResponse(BaseModel):
    reply: str


class OkResponse(BaseModel):
    ok: bool = True


# --- Batch Schemas ---


class BackfillRequest(BaseModel):
    conversation_id: str | None = None
    limit: int | None = None


class BatchStatusResponse(BaseModel):
    total: int = 0
    processed: int = 0
    failed: int = 0
    status: str = "idle"
