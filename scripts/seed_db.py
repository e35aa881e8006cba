"""Seed the database with sample data for development.

Messages are stored but not indexed; run ``scripts/run_batch.py`` afterwards
to embed and classify them.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from rapport.database import async_session, init_db
from rapport.models import Conversation, Message, User


SAMPLE_USERS = [
    {"user_id": "alex", "display_name": "Alex", "username": "alex.r", "partner_id": "jordan"},
    {"user_id": "jordan", "display_name": "Jordan", "username": "jordy", "partner_id": "alex"},
    {"user_id": "sam", "display_name": "Sam", "username": "samwise", "partner_id": None},
    {"user_id": "riley", "display_name": "Riley", "username": "riley99", "partner_id": None},
    {"user_id": "casey", "display_name": "Casey", "username": "casey.k", "partner_id": None},
]

SAMPLE_CONVERSATIONS = [
    {
        "conversation_id": "seed-romantic",
        "participants": ["alex", "jordan"],
        "messages": [
            ("alex", "Morning! Did you sleep ok?"),
            ("jordan", "Not really, work stuff kept me up"),
            ("alex", "Ugh, I'm sorry. Want to talk about it tonight?"),
            ("jordan", "Yes please, that would help a lot ❤️"),
            ("alex", "You never remember to take the trash out though"),
            ("jordan", "Well if YOU had reminded me like you said..."),
            ("alex", "Fair, I forgot too. Sorry for snapping"),
            ("jordan", "It's ok. Love you, see you tonight"),
        ],
    },
    {
        "conversation_id": "seed-platonic",
        "participants": ["alex", "sam"],
        "messages": [
            ("sam", "I GOT THE JOB!!"),
            ("alex", "No way!! Tell me everything, when do you start?"),
            ("sam", "Two weeks! Celebratory tacos this weekend?"),
            ("alex", "Obviously. Saturday at 7?"),
            ("sam", "Perfect, I'll book the place by the river"),
        ],
    },
    {
        "conversation_id": "seed-group",
        "participants": ["alex", "sam", "riley", "casey"],
        "messages": [
            ("riley", "Who's in for the concert next month?"),
            ("casey", "Me! Already listening to the setlist"),
            ("sam", "Count me in"),
            ("alex", "Can't, I have a work trip that week"),
            ("riley", "Whatever, you always bail"),
            ("casey", "Be nice lol. Alex we'll send videos"),
        ],
    },
]


async def seed():
    await init_db()
    now = datetime.now(timezone.utc)

    async with async_session() as db:
        for user_data in SAMPLE_USERS:
            existing = await db.execute(select(User).where(User.user_id == user_data["user_id"]))
            if existing.scalar_one_or_none():
                print(f"User {user_data['user_id']} already exists, skipping")
                continue
            db.add(User(**user_data))
            print(f"Seeded user {user_data['user_id']}")

        for conv_data in SAMPLE_CONVERSATIONS:
            cid = conv_data["conversation_id"]
            existing = await db.execute(
                select(Conversation).where(Conversation.conversation_id == cid)
            )
            if existing.scalar_one_or_none():
                print(f"Conversation {cid} already exists, skipping")
                continue

            participants = conv_data["participants"]
            lines = conv_data["messages"]
            start = now - timedelta(minutes=len(lines))
            db.add(
                Conversation(
                    conversation_id=cid,
                    participants=participants,
                    is_group=len(participants) > 2,
                    last_message_text=lines[-1][1],
                    last_message_at=start + timedelta(minutes=len(lines) - 1),
                )
            )
            for i, (sender_id, text) in enumerate(lines):
                db.add(
                    Message(
                        conversation_id=cid,
                        sender_id=sender_id,
                        text=text,
                        created_at=start + timedelta(minutes=i),
                    )
                )
            print(f"Seeded conversation {cid} with {len(lines)} messages")

        await db.commit()
        print("Database seeded successfully!")


def main():
    asyncio.run(seed())


if __name__ == "__main__":
    main()
