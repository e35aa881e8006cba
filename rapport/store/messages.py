import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rapport.models import COACH_SENDER_ID, CoachIndex, Conversation, IndexedMessage, Message, User

logger = logging.getLogger(__name__)


class MessageStore:
    """Append-only message log plus the conversation, user and coach-index records around it."""

    async def append(
        self,
        conversation_id: str,
        sender_id: str,
        text: str,
        db: AsyncSession,
        created_at: datetime | None = None,
        message_id: str | None = None,
    ) -> Message:
        """Append a message and move the conversation's last-message pointer."""
        created_at = created_at or datetime.now(timezone.utc)
        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            text=text,
            created_at=created_at,
        )
        if message_id:
            message.message_id = message_id
        db.add(message)

        conversation = await self.get_conversation(conversation_id, db)
        if conversation is not None:
            conversation.last_message_text = text
            conversation.last_message_at = created_at

        await db.flush()
        return message

    async def read_range(
        self, conversation_id: str, db: AsyncSession, limit: int | None = None
    ) -> list[Message]:
        """Messages ordered oldest to newest; with a limit, the newest ``limit`` of them."""
        stmt = select(Message).where(Message.conversation_id == conversation_id)
        if limit:
            stmt = stmt.order_by(Message.created_at.desc()).limit(limit)
            result = await db.execute(stmt)
            return list(reversed(result.scalars().all()))

        result = await db.execute(stmt.order_by(Message.created_at.asc()))
        return list(result.scalars().all())

    async def unindexed_messages(
        self,
        db: AsyncSession,
        conversation_id: str | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        """Non-empty messages of non-coach conversations that have no index entry, oldest first."""
        coach_cids = select(Conversation.conversation_id).where(Conversation.is_coach == True)  # noqa: E712
        stmt = (
            select(Message)
            .where(
                Message.sender_id != COACH_SENDER_ID,
                Message.text != "",
                Message.conversation_id.not_in(coach_cids),
                Message.message_id.not_in(select(IndexedMessage.message_id)),
            )
            .order_by(Message.created_at.asc())
        )
        if conversation_id:
            stmt = stmt.where(Message.conversation_id == conversation_id)
        if limit:
            stmt = stmt.limit(limit)

        result = await db.execute(stmt)
        return list(result.scalars().all())

    # --- conversations ---

    async def get_conversation(self, conversation_id: str, db: AsyncSession) -> Conversation | None:
        stmt = select(Conversation).where(Conversation.conversation_id == conversation_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def create_conversation(
        self,
        participants: list[str],
        db: AsyncSession,
        conversation_id: str | None = None,
    ) -> Conversation:
        conversation = Conversation(participants=participants, is_group=len(participants) > 2)
        if conversation_id:
            conversation.conversation_id = conversation_id
        db.add(conversation)
        await db.flush()
        return conversation

    # --- coach index ---

    async def get_coach_chat_id(self, user_id: str, parent_cid: str, db: AsyncSession) -> str | None:
        stmt = select(CoachIndex.coach_cid).where(
            CoachIndex.user_id == user_id, CoachIndex.parent_cid == parent_cid
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_coach_chat(
        self, user_id: str, parent_cid: str, coach_cid: str, db: AsyncSession
    ) -> None:
        """Insert the index row; raises IntegrityError if another request claimed the pair first."""
        db.add(CoachIndex(user_id=user_id, parent_cid=parent_cid, coach_cid=coach_cid))
        await db.flush()

    async def create_coach_conversation(
        self, coach_cid: str, user_id: str, parent: Conversation, db: AsyncSession
    ) -> Conversation:
        coach = Conversation(
            conversation_id=coach_cid,
            participants=[user_id, COACH_SENDER_ID],
            is_coach=True,
            parent_cid=parent.conversation_id,
        )
        db.add(coach)
        parent.coach_chat_id = coach_cid
        await db.flush()
        return coach

    # --- users ---

    async def get_user(self, user_id: str, db: AsyncSession) -> User | None:
        result = await db.execute(select(User).where(User.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_users(self, user_ids: list[str], db: AsyncSession) -> dict[str, User]:
        if not user_ids:
            return {}
        result = await db.execute(select(User).where(User.user_id.in_(user_ids)))
        return {u.user_id: u for u in result.scalars().all()}

    async def are_partners(self, user_a: str, user_b: str, db: AsyncSession) -> bool:
        """True when each user's partner link points at the other."""
        users = await self.get_users([user_a, user_b], db)
        a, b = users.get(user_a), users.get(user_b)
        if a is None or b is None:
            return False
        return a.partner_id == user_b and b.partner_id == user_a
