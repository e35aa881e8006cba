"""Topic affinity: how much, and how warmly, a conversation covers candidate topics."""

import logging
import random
from dataclasses import dataclass, field

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from rapport.analytics.similarity import cosine_similarities
from rapport.config import settings
from rapport.exceptions import InsufficientDataError
from rapport.llm import LLMClient, get_llm_client
from rapport.store.vector_index import IndexMatch, VectorIndex

logger = logging.getLogger(__name__)

# Love Map topics (partners' inner worlds)
LOVE_MAP_TOPICS = [
    "dreams and aspirations",
    "childhood memories",
    "fears and worries",
    "favorite activities",
    "family relationships",
    "work and career goals",
    "values and beliefs",
    "hobbies and interests",
    "future plans together",
    "personal growth goals",
]

# Everyday interests for friendships and groups
INTEREST_TOPICS = [
    "movies and tv shows",
    "music and concerts",
    "sports and fitness",
    "food and cooking",
    "travel and trips",
    "video games",
    "books and reading",
    "work and school",
    "pets and animals",
    "weekend plans",
    "technology and gadgets",
    "fashion and shopping",
]


@dataclass
class TopicScore:
    topic: str
    score: float = 0.0
    coverage: float = 0.0
    support: int = 0
    support_by_sender: dict[str, int] = field(default_factory=dict)


class TopicAffinityEngine:
    def __init__(
        self,
        llm_client: LLMClient | None = None,
        index: VectorIndex | None = None,
        retrieval: str | None = None,
        support_threshold: float | None = None,
    ):
        self.llm = llm_client or get_llm_client()
        self.index = index or VectorIndex()
        self.retrieval = retrieval or settings.topic_retrieval
        self.support_threshold = (
            settings.topic_support_threshold if support_threshold is None else support_threshold
        )

    async def score_topics(
        self,
        topics: list[str],
        conversation_id: str,
        db: AsyncSession,
        retrieval_budget: int | None = None,
        min_messages: int | None = None,
    ) -> list[TopicScore]:
        """Score each topic against the conversation's indexed messages.

        Raises InsufficientDataError when the conversation has fewer than
        ``min_messages`` indexed messages or none with a usable vector.
        """
        budget = retrieval_budget or settings.topic_retrieval_budget
        required = settings.min_topic_messages if min_messages is None else min_messages

        # Cheap guard before paying for topic embeddings
        recent = await self.index.query(conversation_id, budget, db)
        usable = self._usable(recent)
        if len(recent) < required:
            raise InsufficientDataError(required, len(recent))
        if not usable:
            raise InsufficientDataError(required, len(usable))

        topic_vectors = await self.llm.embed_many(topics)

        scores = []
        for topic, topic_vector in zip(topics, topic_vectors):
            if self.retrieval == "topic":
                matches = self._usable(
                    await self.index.query(conversation_id, budget, db, vector=topic_vector)
                )
            else:
                matches = usable
            scores.append(self._score(topic, topic_vector, matches))

        logger.info(
            "Scored %d topics for conversation %s over %d messages",
            len(scores),
            conversation_id,
            len(usable),
        )
        return scores

    def _usable(self, matches: list[IndexMatch]) -> list[IndexMatch]:
        return [m for m in matches if len(m.vector) == self.index.dimension]

    def _score(self, topic: str, topic_vector: list[float], matches: list[IndexMatch]) -> TopicScore:
        if not matches:
            return TopicScore(topic=topic)

        sims = cosine_similarities(topic_vector, [m.vector for m in matches])
        weights = np.array([m.metadata.sentiment.weight for m in matches], dtype=float)

        positive = np.clip(sims, 0.0, None)
        total = float(positive.sum())
        score = float((weights * positive).sum() / total) if total > 0 else 0.0

        support_by_sender: dict[str, int] = {}
        for match, sim in zip(matches, sims):
            if sim >= self.support_threshold:
                sender = match.metadata.sender_id or "unknown"
                support_by_sender[sender] = support_by_sender.get(sender, 0) + 1

        return TopicScore(
            topic=topic,
            score=round(score, 4),
            coverage=round(float(sims.mean()), 4),
            support=sum(support_by_sender.values()),
            support_by_sender=support_by_sender,
        )


def _sample(ranked: list[TopicScore], sample_size: int | None, rng: random.Random | None) -> TopicScore | None:
    if not ranked:
        return None
    size = sample_size or settings.topic_sample_size
    return (rng or random).choice(ranked[: max(1, size)])


def select_under_explored(
    scores: list[TopicScore], sample_size: int | None = None, rng: random.Random | None = None
) -> TopicScore | None:
    """Random pick among the least covered topics."""
    ranked = sorted(scores, key=lambda s: (s.coverage, s.support))
    return _sample(ranked, sample_size, rng)


def select_positive_lean(
    scores: list[TopicScore], sample_size: int | None = None, rng: random.Random | None = None
) -> TopicScore | None:
    """Random pick among the topics discussed most warmly."""
    ranked = sorted(scores, key=lambda s: s.score, reverse=True)
    return _sample(ranked, sample_size, rng)


def select_shared_interest(
    scores: list[TopicScore],
    participants: list[str],
    sample_size: int | None = None,
    rng: random.Random | None = None,
) -> TopicScore | None:
    """Random pick among the topics every participant brings up the most."""

    def shared_support(s: TopicScore) -> int:
        return min((s.support_by_sender.get(p, 0) for p in participants), default=0)

    ranked = sorted(scores, key=lambda s: (shared_support(s), s.coverage), reverse=True)
    return _sample(ranked, sample_size, rng)


def topic_champions(scores: list[TopicScore]) -> dict[str, str]:
    """Topic -> sender who brings it up most; topics nobody supports are left out."""
    champions = {}
    for s in scores:
        if s.support_by_sender:
            champions[s.topic] = max(s.support_by_sender.items(), key=lambda kv: kv[1])[0]
    return champions
