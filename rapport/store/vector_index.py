"""Similarity index over message embeddings, stored alongside the message log."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rapport.analytics.similarity import cosine_similarities, is_zero_vector
from rapport.config import settings
from rapport.models import IndexedMessage

logger = logging.getLogger(__name__)


class Sentiment(str, Enum):
    POSITIVE = "pos"
    NEUTRAL = "neu"
    NEGATIVE = "neg"

    @classmethod
    def parse(cls, value: str | None) -> "Sentiment":
        try:
            return cls(value)
        except ValueError:
            return cls.NEUTRAL

    @property
    def weight(self) -> int:
        return {"pos": 1, "neg": -1}.get(self.value, 0)


class Horseman(str, Enum):
    CRITICISM = "criticism"
    CONTEMPT = "contempt"
    DEFENSIVENESS = "defensiveness"
    NONE = "none"

    @classmethod
    def parse(cls, value: str | None) -> "Horseman":
        try:
            return cls(value)
        except ValueError:
            return cls.NONE


@dataclass
class MessageMetadata:
    conversation_id: str
    sender_id: str | None = None
    created_at: datetime | None = None
    text: str = ""
    sentiment: Sentiment = Sentiment.NEUTRAL
    horseman: Horseman = Horseman.NONE

    @classmethod
    def from_dict(cls, data: dict) -> "MessageMetadata":
        """Build metadata from a loose mapping, defaulting missing or unknown labels."""
        return cls(
            conversation_id=data.get("conversation_id", ""),
            sender_id=data.get("sender_id"),
            created_at=data.get("created_at"),
            text=data.get("text") or "",
            sentiment=Sentiment.parse(data.get("sentiment")),
            horseman=Horseman.parse(data.get("horseman")),
        )


@dataclass
class IndexMatch:
    id: str
    metadata: MessageMetadata
    score: float = 0.0
    vector: list[float] = field(default_factory=list)


def _to_match(row: IndexedMessage, score: float = 0.0) -> IndexMatch:
    return IndexMatch(
        id=row.message_id,
        score=score,
        vector=list(row.vector or []),
        metadata=MessageMetadata(
            conversation_id=row.conversation_id,
            sender_id=row.sender_id,
            created_at=row.created_at,
            text=row.text,
            sentiment=Sentiment.parse(row.sentiment),
            horseman=Horseman.parse(row.horseman),
        ),
    )


class VectorIndex:
    def __init__(self, dimension: int | None = None):
        self.dimension = dimension or settings.resolved_embedding_dim

    async def upsert(
        self, message_id: str, vector: list[float], metadata: MessageMetadata, db: AsyncSession
    ) -> None:
        """Insert or overwrite the entry for ``message_id``."""
        if len(vector) != self.dimension:
            raise ValueError(
                f"Vector dimension mismatch for {message_id}: expected {self.dimension}, got {len(vector)}"
            )

        entry = await db.get(IndexedMessage, message_id)
        if entry is None:
            entry = IndexedMessage(message_id=message_id)
            db.add(entry)

        entry.conversation_id = metadata.conversation_id
        entry.sender_id = metadata.sender_id or ""
        entry.created_at = metadata.created_at or datetime.now(timezone.utc)
        entry.text = metadata.text
        entry.sentiment = metadata.sentiment.value
        entry.horseman = metadata.horseman.value
        entry.vector = [float(v) for v in vector]
        await db.flush()

    async def query(
        self,
        conversation_id: str,
        top_k: int,
        db: AsyncSession,
        vector: list[float] | None = None,
    ) -> list[IndexMatch]:
        """Entries of one conversation.

        Without a query vector (or with an all-zero probe) this returns the ``top_k``
        most recent entries ordered oldest to newest. With a vector it returns the
        ``top_k`` most similar entries ordered by descending similarity.
        """
        if top_k <= 0:
            return []

        base = select(IndexedMessage).where(IndexedMessage.conversation_id == conversation_id)

        if is_zero_vector(vector):
            stmt = base.order_by(IndexedMessage.created_at.desc()).limit(top_k)
            result = await db.execute(stmt)
            rows = list(reversed(result.scalars().all()))
            return [_to_match(row) for row in rows]

        stmt = base.order_by(IndexedMessage.created_at.desc()).limit(settings.vector_scan_limit)
        result = await db.execute(stmt)
        rows = [r for r in result.scalars().all() if len(r.vector or []) == len(vector)]
        if not rows:
            return []

        sims = cosine_similarities(vector, [r.vector for r in rows])
        ranked = sorted(zip(rows, sims), key=lambda pair: pair[1], reverse=True)[:top_k]
        return [_to_match(row, float(sim)) for row, sim in ranked]

    async def has_entry(self, message_id: str, db: AsyncSession) -> bool:
        result = await db.execute(
            select(IndexedMessage.message_id).where(IndexedMessage.message_id == message_id)
        )
        return result.scalar_one_or_none() is not None

    async def indexed_ids(self, db: AsyncSession, conversation_id: str | None = None) -> set[str]:
        stmt = select(IndexedMessage.message_id)
        if conversation_id:
            stmt = stmt.where(IndexedMessage.conversation_id == conversation_id)
        result = await db.execute(stmt)
        return {row[0] for row in result.all()}
