import hashlib
import json
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

# Force a dummy provider config so imports don't fail during tests
os.environ.setdefault("RAPPORT_LLM_PROVIDER", "anthropic")
os.environ.setdefault("RAPPORT_ANTHROPIC_API_KEY", "test-key-not-used")
os.environ.setdefault("RAPPORT_EMBEDDING_PROVIDER", "openai")
os.environ.setdefault("RAPPORT_OPENAI_API_KEY", "test-key-not-used")
os.environ.setdefault("RAPPORT_EMBEDDING_DIM", "8")
os.environ.setdefault("RAPPORT_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rapport.database import Base
from rapport.models import Conversation, Message, User
from rapport.store.vector_index import Horseman, MessageMetadata, Sentiment, VectorIndex

# Use SQLite for tests; PostgreSQL types are remapped below
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

EMBEDDING_DIM = 8
T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def fake_embedding(text: str) -> list[float]:
    """Deterministic, never-zero vector derived from the text."""
    digest = hashlib.sha256(text.encode()).digest()
    return [b / 255 + 0.01 for b in digest[:EMBEDDING_DIM]]


@pytest_asyncio.fixture
async def db_engine():
    # Remap PostgreSQL-specific types to SQLite-compatible types
    # so create_all works with SQLite
    _remap_pg_types()

    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


def _remap_pg_types():
    """Remap JSONB→JSON for SQLite compatibility."""
    from sqlalchemy.dialects.sqlite.base import SQLiteTypeCompiler

    # Only patch once
    if getattr(SQLiteTypeCompiler, "_rapport_patched", False):
        return
    SQLiteTypeCompiler._rapport_patched = True

    original_process = SQLiteTypeCompiler.process

    def patched_process(self, type_, **kw):
        if isinstance(type_, JSONB):
            return self.process(JSON(), **kw)
        return original_process(self, type_, **kw)

    SQLiteTypeCompiler.process = patched_process


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def mock_llm():
    """Create a mock LLM client for tests."""
    mock_client = AsyncMock()
    mock_client.embed = AsyncMock(side_effect=lambda text, model=None: fake_embedding(text))
    mock_client.embed_many = AsyncMock(
        side_effect=lambda texts, model=None: [fake_embedding(t) for t in texts]
    )
    mock_client.generate = AsyncMock(return_value='{"sentiment":"pos","horseman":"none"}')
    mock_client.chat = AsyncMock(return_value="Here is what I noticed in your conversation.")
    return mock_client


@pytest.fixture
def index():
    return VectorIndex(dimension=EMBEDDING_DIM)


@pytest_asyncio.fixture
async def users(db):
    people = [
        User(user_id="alex", display_name="Alex", username="alex.r", partner_id="jordan"),
        User(user_id="jordan", display_name="Jordan", username="jordy", partner_id="alex"),
        User(user_id="sam", display_name="Sam", username="samwise"),
        User(user_id="riley", display_name="", username="riley99"),
    ]
    for u in people:
        db.add(u)
    await db.flush()
    return {u.user_id: u for u in people}


@pytest_asyncio.fixture
async def romantic(db, users):
    conv = Conversation(conversation_id="c-romantic", participants=["alex", "jordan"])
    db.add(conv)
    await db.flush()
    return conv


@pytest_asyncio.fixture
async def platonic(db, users):
    conv = Conversation(conversation_id="c-platonic", participants=["alex", "sam"])
    db.add(conv)
    await db.flush()
    return conv


@pytest_asyncio.fixture
async def group(db, users):
    conv = Conversation(
        conversation_id="c-group", participants=["alex", "sam", "riley"], is_group=True
    )
    db.add(conv)
    await db.flush()
    return conv


async def index_messages(
    db,
    index: VectorIndex,
    conversation_id: str,
    rows: list[tuple[str, str, str, str]],
    store_messages: bool = True,
):
    """Store and index ``(sender, text, sentiment, horseman)`` rows one minute apart."""
    for i, (sender, text, sentiment, horseman) in enumerate(rows):
        created_at = T0 + timedelta(minutes=i)
        message_id = f"{conversation_id}-m{i}"
        if store_messages:
            db.add(
                Message(
                    message_id=message_id,
                    conversation_id=conversation_id,
                    sender_id=sender,
                    text=text,
                    created_at=created_at,
                )
            )
        await index.upsert(
            message_id,
            fake_embedding(text),
            MessageMetadata(
                conversation_id=conversation_id,
                sender_id=sender,
                created_at=created_at,
                text=text,
                sentiment=Sentiment(sentiment),
                horseman=Horseman(horseman),
            ),
            db,
        )
    await db.flush()


def classification_json(sentiment: str, horseman: str) -> str:
    return json.dumps({"sentiment": sentiment, "horseman": horseman})
