"""
Seeding of the mock chat store.
Fills an empty database with sample conversations so the UI has something
to show on first start. A store that already holds conversations is left alone.
"""

import logging
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from yspeaking.database import ConversationRecord, MessageRecord
from yspeaking.utils.time import utcnow

logger = logging.getLogger(__name__)

DEFAULT_CONVERSATIONS = [
    {
        "id": "conv-1",
        "title": "New chat 1",
        "messages": [
            {
                "id": "msg-1",
                "role": "assistant",
                "text": "Hello, I'm your voice assistant. How can I help you?",
            }
        ],
    },
    {
        "id": "conv-2",
        "title": "Project requirements",
        "messages": [
            {
                "id": "msg-2",
                "role": "user",
                "text": "We need to tidy up the new requirements document for the review.",
            }
        ],
    },
    {
        "id": "conv-3",
        "title": "Voice test",
        "messages": [],
    },
]


async def seed_default_store(session: AsyncSession) -> dict:
    """
    Insert the sample conversations if the store is empty.

    Returns:
        Summary dict with status and counts
    """
    existing = await session.scalar(select(func.count()).select_from(ConversationRecord))
    if existing:
        return {"status": "skipped", "conversations_created": 0, "messages_created": 0}

    now = utcnow()
    messages_created = 0
    # Listed newest first, so the first entry is inserted last
    for offset, conv in enumerate(reversed(DEFAULT_CONVERSATIONS)):
        session.add(
            ConversationRecord(
                id=conv["id"],
                title=conv["title"],
                created_at=now + timedelta(milliseconds=offset),
            )
        )
        for msg in conv["messages"]:
            session.add(
                MessageRecord(
                    id=msg["id"],
                    conversation_id=conv["id"],
                    role=msg["role"],
                    text=msg["text"],
                    created_at=now,
                )
            )
            messages_created += 1

    await session.commit()
    logger.info(f"Seeded {len(DEFAULT_CONVERSATIONS)} conversations, {messages_created} messages")
    return {
        "status": "success",
        "conversations_created": len(DEFAULT_CONVERSATIONS),
        "messages_created": messages_created,
    }
