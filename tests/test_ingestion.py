import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import T0, classification_json
from rapport.analytics.stats import compute_stats
from rapport.config import settings
from rapport.ingestion.pipeline import IngestionPipeline
from rapport.models import Conversation, Message
from rapport.store.messages import MessageStore
from rapport.store.vector_index import MessageMetadata


def _message(i: int, sender: str, text: str, conversation_id: str = "c1") -> Message:
    return Message(
        message_id=f"{conversation_id}-{i}",
        conversation_id=conversation_id,
        sender_id=sender,
        text=text,
        created_at=T0,
    )


class TestIngest:
    @pytest.mark.asyncio
    async def test_skips_empty_text(self, db, mock_llm, index):
        upsert = AsyncMock()
        index.upsert = upsert
        pipeline = IngestionPipeline(llm_client=mock_llm, index=index)

        for text in ("", "   ", None):
            indexed = await pipeline.ingest(_message(0, "a", text), db)
            assert indexed is False

        mock_llm.embed.assert_not_called()
        mock_llm.generate.assert_not_called()
        upsert.assert_not_called()

    @pytest.mark.asyncio
    async def test_indexes_text_with_labels(self, db, mock_llm, index):
        mock_llm.generate = AsyncMock(return_value=classification_json("neg", "criticism"))
        pipeline = IngestionPipeline(llm_client=mock_llm, index=index)

        indexed = await pipeline.ingest(_message(0, "a", "You never help me"), db)

        assert indexed is True
        matches = await index.query("c1", 10, db)
        assert len(matches) == 1
        meta = matches[0].metadata
        assert (meta.sentiment.value, meta.horseman.value) == ("neg", "criticism")
        assert meta.text == "You never help me"
        assert meta.sender_id == "a"

    @pytest.mark.asyncio
    async def test_classification_failure_is_masked(self, db, mock_llm, index):
        mock_llm.generate = AsyncMock(return_value="not json at all")
        pipeline = IngestionPipeline(llm_client=mock_llm, index=index)

        await pipeline.ingest(_message(0, "a", "hmm"), db)

        matches = await index.query("c1", 10, db)
        assert matches[0].metadata.sentiment.value == "neu"
        assert matches[0].metadata.horseman.value == "none"

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates(self, db, mock_llm, index):
        mock_llm.embed = AsyncMock(side_effect=httpx.ConnectError("down"))
        pipeline = IngestionPipeline(llm_client=mock_llm, index=index)

        with pytest.raises(httpx.ConnectError):
            await pipeline.ingest(_message(0, "a", "hello"), db)

        assert not await index.has_entry("c1-0", db)

    @pytest.mark.asyncio
    async def test_embedding_failure_waits_for_classification(self, db, mock_llm, index):
        finished = []

        async def slow_classification(*args, **kwargs):
            await asyncio.sleep(0.01)
            finished.append(True)
            return classification_json("pos", "none")

        mock_llm.embed = AsyncMock(side_effect=httpx.ConnectError("down"))
        mock_llm.generate = AsyncMock(side_effect=slow_classification)
        pipeline = IngestionPipeline(llm_client=mock_llm, index=index)

        with pytest.raises(httpx.ConnectError):
            await pipeline.ingest(_message(0, "a", "hello"), db)

        assert finished == [True]

    @pytest.mark.asyncio
    async def test_end_to_end_six_messages(self, db, mock_llm, index):
        sentiments = ["neg", "neg", "pos", "pos", "neg", "pos"]
        tags = ["criticism", "none", "none", "none", "contempt", "none"]
        mock_llm.generate = AsyncMock(
            side_effect=[classification_json(s, t) for s, t in zip(sentiments, tags)]
        )
        pipeline = IngestionPipeline(llm_client=mock_llm, index=index)

        for i in range(6):
            sender = "A" if i % 2 == 0 else "B"
            await pipeline.ingest(_message(i, sender, f"message number {i}"), db)

        stats = compute_stats(await index.query("c1", 100, db))

        assert stats.to_dict() == {
            "positive": 3,
            "negative": 3,
            "neutral": 0,
            "total_messages": 6,
            "ratio": "1.00",
            "horsemen": {"criticism": 1, "contempt": 1, "defensiveness": 0},
        }


class TestBackfill:
    @pytest.mark.asyncio
    async def test_indexes_only_missing_messages(
        self, db, session_factory, mock_llm, index, monkeypatch
    ):
        monkeypatch.setattr(settings, "max_concurrent_ingestions", 1)
        store = MessageStore()
        conv = Conversation(conversation_id="c1", participants=["a", "b"])
        coach = Conversation(conversation_id="coach-1", participants=["a", "coach"], is_coach=True)
        db.add_all([conv, coach])
        await db.flush()
        first = await store.append("c1", "a", "hello", db)
        await store.append("c1", "b", "hi back", db)
        await store.append("c1", "a", "", db)
        await store.append("coach-1", "coach", "I'm your coach", db)
        await store.append("coach-1", "a", "help me", db)
        await index.upsert(
            first.message_id,
            [0.5] * index.dimension,
            MessageMetadata(conversation_id="c1"),
            db,
        )
        await db.commit()

        pipeline = IngestionPipeline(llm_client=mock_llm, index=index, session_factory=session_factory)
        progress = await pipeline.backfill()

        assert progress == {"total": 1, "processed": 1, "failed": 0, "status": "complete"}
        assert pipeline.progress["status"] == "complete"
        mock_llm.embed.assert_called_once_with("hi back")

    @pytest.mark.asyncio
    async def test_counts_failures(self, db, session_factory, mock_llm, index, monkeypatch):
        monkeypatch.setattr(settings, "max_concurrent_ingestions", 1)
        store = MessageStore()
        db.add(Conversation(conversation_id="c1", participants=["a", "b"]))
        await db.flush()
        await store.append("c1", "a", "hello", db)
        await store.append("c1", "b", "hi", db)
        await db.commit()
        mock_llm.embed = AsyncMock(side_effect=httpx.ConnectError("down"))

        pipeline = IngestionPipeline(llm_client=mock_llm, index=index, session_factory=session_factory)
        progress = await pipeline.backfill(conversation_id="c1")

        assert progress["total"] == 2
        assert progress["failed"] == 2
        assert progress["processed"] == 0


class TestUnindexedMessages:
    @pytest.mark.asyncio
    async def test_filters_indexed_and_applies_limit(self, db, index):
        store = MessageStore()
        db.add(Conversation(conversation_id="c1", participants=["a", "b"]))
        await db.flush()
        for i, text in enumerate(["one", "two", "three", "four"]):
            await store.append(
                "c1", "a" if i % 2 == 0 else "b", text, db,
                created_at=T0 + timedelta(minutes=i), message_id=f"c1-{i}",
            )
        await index.upsert("c1-0", [0.5] * index.dimension, MessageMetadata(conversation_id="c1"), db)
        await index.upsert("c1-2", [0.5] * index.dimension, MessageMetadata(conversation_id="c1"), db)

        pending = await store.unindexed_messages(db)
        limited = await store.unindexed_messages(db, conversation_id="c1", limit=1)

        assert [m.message_id for m in pending] == ["c1-1", "c1-3"]
        assert [m.message_id for m in limited] == ["c1-1"]
