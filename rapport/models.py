import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from rapport.database import Base

# Use timezone-aware timestamp type for all datetime columns
TZDateTime = DateTime(timezone=True)

# Reserved sender id for messages written by the coach
COACH_SENDER_ID = "coach"


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(200), default="")
    username: Mapped[str] = mapped_column(String(100), default="")
    partner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime, default=_utcnow, server_default=func.now()
    )

    @property
    def name(self) -> str:
        return self.display_name or self.username or self.user_id


class Conversation(Base):
    __tablename__ = "conversations"

    conversation_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    participants: Mapped[list] = mapped_column(JSONB, default=list)
    is_group: Mapped[bool] = mapped_column(Boolean, default=False)
    is_coach: Mapped[bool] = mapped_column(Boolean, default=False)
    parent_cid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    coach_chat_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_message_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime, default=_utcnow, server_default=func.now()
    )


class Message(Base):
    __tablename__ = "messages"

    message_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    conversation_id: Mapped[str] = mapped_column(String(64), index=True)
    sender_id: Mapped[str] = mapped_column(String(64))
    text: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=_utcnow, index=True)


class CoachIndex(Base):
    """One coach conversation per (user, parent conversation)."""

    __tablename__ = "coach_index"
    __table_args__ = (UniqueConstraint("user_id", "parent_cid", name="uq_coach_index_user_parent"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64))
    parent_cid: Mapped[str] = mapped_column(String(64))
    coach_cid: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime, default=_utcnow, server_default=func.now()
    )


class IndexedMessage(Base):
    """Vector index entry; the id is the source message id."""

    __tablename__ = "indexed_messages"

    message_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(String(64), index=True)
    sender_id: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(TZDateTime, index=True)
    text: Mapped[str] = mapped_column(Text)
    sentiment: Mapped[str] = mapped_column(String(8), default="neu")
    horseman: Mapped[str] = mapped_column(String(20), default="none")
    vector: Mapped[list] = mapped_column(JSONB)
    indexed_at: Mapped[datetime] = mapped_column(
        TZDateTime, default=_utcnow, server_default=func.now()
    )
