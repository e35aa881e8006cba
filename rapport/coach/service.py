import logging
import random
import uuid
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rapport.analytics.relationship import RelationshipType, relationship_for
from rapport.analytics.stats import compute_participant_stats, compute_stats, energy_score
from rapport.analytics.topics import (
    INTEREST_TOPICS,
    LOVE_MAP_TOPICS,
    TopicAffinityEngine,
    select_positive_lean,
    select_shared_interest,
    select_under_explored,
    topic_champions,
)
from rapport.coach import prompts
from rapport.coach.prompts import AnalysisPrompt
from rapport.coach.synthesizer import CoachSynthesizer
from rapport.config import settings
from rapport.exceptions import InsufficientDataError, InvalidRequestError, NotFoundError
from rapport.llm import LLMClient, get_llm_client
from rapport.models import COACH_SENDER_ID, Conversation, Message, User
from rapport.store.messages import MessageStore
from rapport.store.vector_index import VectorIndex

logger = logging.getLogger(__name__)


class AnalysisKind(str, Enum):
    SUMMARY = "summary"
    RATIO = "ratio"
    HORSEMEN = "horsemen"
    LOVE_MAP = "love_map"
    BIDS = "bids"
    RUPTURE_REPAIR = "rupture_repair"
    ACR = "acr"
    SHARED_INTERESTS = "shared_interests"
    TOPIC_VIBE_CHECK = "topic_vibe_check"
    TOPIC_CHAMPION = "topic_champion"
    GROUP_ENERGY = "group_energy"
    FRIENDSHIP_CHECKIN = "friendship_checkin"

    @classmethod
    def parse(cls, value: str) -> "AnalysisKind":
        try:
            return cls(value)
        except ValueError:
            raise InvalidRequestError(f"Unknown analysis kind: {value}")

    @property
    def relationships(self) -> frozenset[RelationshipType]:
        """Relationship types this analysis is offered for."""
        match self:
            case AnalysisKind.TOPIC_CHAMPION | AnalysisKind.GROUP_ENERGY:
                return frozenset({RelationshipType.GROUP})
            case AnalysisKind.FRIENDSHIP_CHECKIN:
                return frozenset({RelationshipType.PLATONIC})
            case AnalysisKind.LOVE_MAP:
                return frozenset({RelationshipType.ROMANTIC})
            case AnalysisKind.SHARED_INTERESTS:
                return frozenset({RelationshipType.PLATONIC, RelationshipType.GROUP})
            case _:
                return frozenset(RelationshipType)


@dataclass
class CoachContext:
    user: User
    coach: Conversation
    parent: Conversation
    relationship: RelationshipType
    users: dict[str, User] = field(default_factory=dict)

    @property
    def people(self) -> list[str]:
        return [p for p in (self.parent.participants or []) if p != COACH_SENDER_ID]

    def name_of(self, user_id: str) -> str:
        user = self.users.get(user_id)
        return user.name if user else user_id


class CoachService:
    def __init__(
        self,
        llm_client: LLMClient | None = None,
        store: MessageStore | None = None,
        index: VectorIndex | None = None,
        topics: TopicAffinityEngine | None = None,
        synthesizer: CoachSynthesizer | None = None,
        rng: random.Random | None = None,
    ):
        self.llm = llm_client or get_llm_client()
        self.store = store or MessageStore()
        self.index = index or VectorIndex()
        self.topics = topics or TopicAffinityEngine(llm_client=self.llm, index=self.index)
        self.synthesizer = synthesizer or CoachSynthesizer(llm_client=self.llm)
        self.rng = rng

    # --- coach chat lifecycle ---

    async def start_coach_chat(self, user_id: str, parent_cid: str, db: AsyncSession) -> str:
        """Return the user's coach conversation for ``parent_cid``, creating it on first call.

        At most one coach conversation exists per (user, parent). A concurrent
        creator that loses the race on the coach index gets the winner's id.
        """
        user = await self.store.get_user(user_id, db)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        parent = await self.store.get_conversation(parent_cid, db)
        if parent is None or parent.is_coach:
            raise NotFoundError(f"Conversation {parent_cid} not found")
        if user_id not in (parent.participants or []):
            raise InvalidRequestError(f"User {user_id} is not a participant of {parent_cid}")

        existing = await self.store.get_coach_chat_id(user_id, parent_cid, db)
        if existing:
            return existing

        relationship = await relationship_for(parent, db, self.store)

        coach_cid = str(uuid.uuid4())
        try:
            await self.store.claim_coach_chat(user_id, parent_cid, coach_cid, db)
        except IntegrityError:
            await db.rollback()
            existing = await self.store.get_coach_chat_id(user_id, parent_cid, db)
            if existing is None:
                raise
            logger.info("Coach chat for %s/%s created concurrently", user_id, parent_cid)
            return existing

        await self.store.create_coach_conversation(coach_cid, user_id, parent, db)
        await self.send_coach_message(coach_cid, prompts.greeting_for(relationship), db)

        logger.info("Created %s coach chat %s for %s/%s", relationship.value, coach_cid, user_id, parent_cid)
        return coach_cid

    async def send_coach_message(self, coach_cid: str, text: str, db: AsyncSession) -> Message:
        return await self.store.append(coach_cid, COACH_SENDER_ID, text, db)

    # --- analyses ---

    async def analyze(
        self,
        kind: str,
        user_id: str,
        coach_cid: str,
        parent_cid: str,
        db: AsyncSession,
        params: dict | None = None,
    ) -> None:
        """Run one analysis of the parent conversation and post exactly one coach message."""
        analysis = AnalysisKind.parse(kind)
        ctx = await self._load_context(user_id, coach_cid, parent_cid, db)
        if ctx.relationship not in analysis.relationships:
            raise InvalidRequestError(
                f"Analysis '{analysis.value}' is not available for {ctx.relationship.value} conversations"
            )

        try:
            prompt = await self._build_prompt(analysis, ctx, db, params or {})
        except InsufficientDataError as exc:
            logger.info(
                "Not enough data for %s on %s: %d/%d",
                analysis.value,
                parent_cid,
                exc.available,
                exc.required,
            )
            text = prompts.insufficient_data_message(exc.required, exc.available)
        except Exception:
            logger.exception("Analysis %s failed for %s", analysis.value, parent_cid)
            text = prompts.error_message()
        else:
            text = await self._synthesize(ctx, prompt, db)

        await self.send_coach_message(coach_cid, text, db)

    async def reply(
        self, user_id: str, coach_cid: str, parent_cid: str, text: str, db: AsyncSession
    ) -> str:
        """Store the user's coach message and answer it."""
        if not text or not text.strip():
            raise InvalidRequestError("Reply text is empty")

        ctx = await self._load_context(user_id, coach_cid, parent_cid, db)
        await self.store.append(coach_cid, user_id, text, db)

        matches = await self.index.query(parent_cid, settings.recent_parent_messages, db)
        stats = compute_stats(matches)

        answer = await self._synthesize(ctx, prompts.reply_prompt(stats), db)
        await self.send_coach_message(coach_cid, answer, db)
        return answer

    async def _load_context(
        self, user_id: str, coach_cid: str, parent_cid: str, db: AsyncSession
    ) -> CoachContext:
        user = await self.store.get_user(user_id, db)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        parent = await self.store.get_conversation(parent_cid, db)
        if parent is None or parent.is_coach:
            raise NotFoundError(f"Conversation {parent_cid} not found")

        coach = await self.store.get_conversation(coach_cid, db)
        if coach is None or not coach.is_coach:
            raise NotFoundError(f"Coach conversation {coach_cid} not found")
        if coach.parent_cid != parent_cid or user_id not in (coach.participants or []):
            raise InvalidRequestError(
                f"Coach conversation {coach_cid} does not belong to {user_id} for {parent_cid}"
            )

        relationship = await relationship_for(parent, db, self.store)
        ctx = CoachContext(user=user, coach=coach, parent=parent, relationship=relationship)
        ctx.users = await self.store.get_users(ctx.people, db)
        return ctx

    async def _build_prompt(
        self, analysis: AnalysisKind, ctx: CoachContext, db: AsyncSession, params: dict
    ) -> AnalysisPrompt:
        parent_cid = ctx.parent.conversation_id

        match analysis:
            case AnalysisKind.SUMMARY:
                window = int(params.get("n") or settings.summary_window)
                stats = compute_stats(await self.index.query(parent_cid, window, db))
                return prompts.summary_prompt(ctx.user.name, stats)

            case AnalysisKind.RATIO:
                stats = compute_stats(await self.index.query(parent_cid, settings.stats_window, db))
                return prompts.ratio_prompt(stats)

            case AnalysisKind.HORSEMEN:
                stats = compute_stats(await self.index.query(parent_cid, settings.stats_window, db))
                return prompts.horsemen_prompt(stats)

            case AnalysisKind.FRIENDSHIP_CHECKIN:
                stats = compute_stats(await self.index.query(parent_cid, settings.stats_window, db))
                return prompts.friendship_checkin_prompt(stats)

            case AnalysisKind.BIDS:
                return prompts.bids_prompt()

            case AnalysisKind.RUPTURE_REPAIR:
                return prompts.rupture_repair_prompt()

            case AnalysisKind.ACR:
                return prompts.acr_prompt()

            case AnalysisKind.LOVE_MAP:
                scores = await self.topics.score_topics(
                    LOVE_MAP_TOPICS, parent_cid, db, min_messages=settings.min_topic_messages
                )
                return prompts.love_map_prompt(select_under_explored(scores, rng=self.rng))

            case AnalysisKind.SHARED_INTERESTS:
                scores = await self.topics.score_topics(
                    INTEREST_TOPICS, parent_cid, db, min_messages=settings.min_topic_messages
                )
                topic = select_shared_interest(scores, ctx.people, rng=self.rng)
                return prompts.shared_interests_prompt(topic, [ctx.name_of(p) for p in ctx.people])

            case AnalysisKind.TOPIC_VIBE_CHECK:
                candidates = (
                    LOVE_MAP_TOPICS if ctx.relationship is RelationshipType.ROMANTIC else INTEREST_TOPICS
                )
                scores = await self.topics.score_topics(
                    candidates, parent_cid, db, min_messages=settings.min_topic_messages
                )
                return prompts.topic_vibe_check_prompt(
                    select_positive_lean(scores, rng=self.rng),
                    select_under_explored(scores, rng=self.rng),
                )

            case AnalysisKind.TOPIC_CHAMPION:
                scores = await self.topics.score_topics(
                    INTEREST_TOPICS, parent_cid, db, min_messages=settings.min_group_messages
                )
                champions = {
                    topic: ctx.name_of(sender) for topic, sender in topic_champions(scores).items()
                }
                return prompts.topic_champion_prompt(champions)

            case AnalysisKind.GROUP_ENERGY:
                matches = await self.index.query(parent_cid, settings.stats_window, db)
                if len(matches) < settings.min_group_messages:
                    raise InsufficientDataError(settings.min_group_messages, len(matches))
                stats = compute_stats(matches)
                member_energy = {
                    ctx.name_of(sender): energy_score(member_stats)
                    for sender, member_stats in compute_participant_stats(matches).items()
                }
                return prompts.group_energy_prompt(energy_score(stats), stats, member_energy)

    async def _synthesize(self, ctx: CoachContext, prompt: AnalysisPrompt, db: AsyncSession) -> str:
        parent_messages: list[Message] = []
        if prompt.include_parent:
            parent_messages = await self.store.read_range(
                ctx.parent.conversation_id, db, limit=settings.parent_excerpt_messages
            )
        coach_history: list[Message] = []
        if prompt.include_history:
            coach_history = await self.store.read_range(
                ctx.coach.conversation_id, db, limit=settings.recent_parent_messages
            )

        return await self.synthesizer.synthesize(
            ctx.relationship,
            prompt,
            coach_history,
            parent_messages,
            ctx.user.name,
            ctx.users,
        )
