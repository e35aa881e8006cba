from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from rapport.exceptions import InvalidRequestError
from rapport.models import COACH_SENDER_ID, Conversation
from rapport.store.messages import MessageStore


class RelationshipType(str, Enum):
    ROMANTIC = "romantic"
    PLATONIC = "platonic"
    GROUP = "group"


def classify_relationship(participants: list[str], mutual_partners: bool) -> RelationshipType:
    """Relationship type from the participant list and the symmetric partner-link check."""
    people = [p for p in participants if p != COACH_SENDER_ID]
    match len(people):
        case 2:
            return RelationshipType.ROMANTIC if mutual_partners else RelationshipType.PLATONIC
        case n if n >= 3:
            return RelationshipType.GROUP
        case n:
            raise InvalidRequestError(
                f"Conversation must have 2 or more participants, found {n}"
            )


async def relationship_for(
    conversation: Conversation, db: AsyncSession, store: MessageStore | None = None
) -> RelationshipType:
    store = store or MessageStore()
    people = [p for p in (conversation.participants or []) if p != COACH_SENDER_ID]
    mutual = False
    if len(people) == 2:
        mutual = await store.are_partners(people[0], people[1], db)
    return classify_relationship(people, mutual)
