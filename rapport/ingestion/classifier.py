import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from rapport.config import settings
from rapport.ingestion.prompts import CLASSIFICATION_SYSTEM_PROMPT
from rapport.llm import LLMClient, get_llm_client
from rapport.store.vector_index import Horseman, Sentiment

logger = logging.getLogger(__name__)


class Classification(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    sentiment: Literal["pos", "neu", "neg"]
    horseman: Literal["criticism", "contempt", "defensiveness", "none"]

    @property
    def sentiment_label(self) -> Sentiment:
        return Sentiment(self.sentiment)

    @property
    def horseman_label(self) -> Horseman:
        return Horseman(self.horseman)


FALLBACK_CLASSIFICATION = Classification(sentiment="neu", horseman="none")


def _strip_fences(raw_text: str) -> str:
    raw_text = raw_text.strip()
    if raw_text.startswith("```"):
        lines = raw_text.split("\n")
        lines = lines[1:]  # remove opening fence
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        raw_text = "\n".join(lines)
    return raw_text.strip()


class MessageClassifier:
    def __init__(self, llm_client: LLMClient | None = None):
        self.llm = llm_client or get_llm_client()

    async def classify(self, text: str) -> Classification:
        """Label a message with sentiment and horseman tag.

        Never raises: transport errors and malformed replies both fall back to
        neutral/none.
        """
        try:
            raw_text = await self.llm.generate(
                system=CLASSIFICATION_SYSTEM_PROMPT,
                user_message=text,
                model=settings.resolved_classification_model,
                max_tokens=settings.max_classification_tokens,
                temperature=0.0,
            )
        except Exception:
            logger.exception("Classification call failed")
            return FALLBACK_CLASSIFICATION

        raw_text = _strip_fences(raw_text or "")
        try:
            return Classification.model_validate_json(raw_text)
        except ValidationError:
            logger.warning("Unparseable classification response: %s", raw_text[:500])
            return FALLBACK_CLASSIFICATION
