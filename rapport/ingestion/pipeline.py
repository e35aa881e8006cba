import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rapport.config import settings
from rapport.database import async_session
from rapport.ingestion.classifier import MessageClassifier
from rapport.llm import LLMClient, get_llm_client
from rapport.models import Message
from rapport.store.messages import MessageStore
from rapport.store.vector_index import MessageMetadata, VectorIndex

logger = logging.getLogger(__name__)


class IngestionPipeline:
    def __init__(
        self,
        llm_client: LLMClient | None = None,
        classifier: MessageClassifier | None = None,
        index: VectorIndex | None = None,
        store: MessageStore | None = None,
        session_factory: async_sessionmaker | None = None,
    ):
        self.llm = llm_client or get_llm_client()
        self.classifier = classifier or MessageClassifier(llm_client=self.llm)
        self.index = index or VectorIndex()
        self.store = store or MessageStore()
        self.session_factory = session_factory or async_session
        self._progress = {"total": 0, "processed": 0, "failed": 0, "status": "idle"}

    @property
    def progress(self) -> dict:
        return self._progress.copy()

    async def ingest(self, message: Message, db: AsyncSession) -> bool:
        """Embed, classify and index one message.

        Returns False when the message has no text and nothing was written.
        Embedding errors propagate; classification errors are masked by the
        classifier.
        """
        text = (message.text or "").strip()
        if not text:
            logger.debug("Skipping empty message %s", message.message_id)
            return False

        # Both calls settle before an error propagates
        vector, label = await asyncio.gather(
            self.llm.embed(message.text),
            self.classifier.classify(message.text),
            return_exceptions=True,
        )
        if isinstance(vector, BaseException):
            raise vector
        if isinstance(label, BaseException):
            raise label

        metadata = MessageMetadata(
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            created_at=message.created_at,
            text=message.text,
            sentiment=label.sentiment_label,
            horseman=label.horseman_label,
        )
        await self.index.upsert(message.message_id, vector, metadata, db)

        logger.info(
            "Indexed message %s in %s (%s/%s)",
            message.message_id,
            message.conversation_id,
            label.sentiment,
            label.horseman,
        )
        return True

    async def backfill(self, conversation_id: str | None = None, limit: int | None = None) -> dict:
        """Index stored messages that have no index entry yet."""
        self._progress = {"total": 0, "processed": 0, "failed": 0, "status": "backfilling"}

        async with self.session_factory() as db:
            pending = await self.store.unindexed_messages(
                db, conversation_id=conversation_id, limit=limit
            )

        self._progress["total"] = len(pending)
        logger.info("Backfilling %d unindexed messages", len(pending))

        semaphore = asyncio.Semaphore(settings.max_concurrent_ingestions)

        async def _ingest_one(message: Message):
            async with semaphore:
                try:
                    async with self.session_factory() as db:
                        await self.ingest(message, db)
                        await db.commit()
                    self._progress["processed"] += 1
                except Exception:
                    logger.exception("Failed to index message %s", message.message_id)
                    self._progress["failed"] += 1

        await asyncio.gather(*[_ingest_one(m) for m in pending])

        self._progress["status"] = "complete"
        logger.info(
            "Backfill complete: %d processed, %d failed",
            self._progress["processed"],
            self._progress["failed"],
        )
        return self._progress.copy()
