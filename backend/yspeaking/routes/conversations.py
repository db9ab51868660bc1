"""
Mock conversation backend used for local development.

Implements the REST contract the chat client consumes:
- GET    /api/conversations
- POST   /api/conversations {title?}
- PATCH  /api/conversations/{id} {title}
- DELETE /api/conversations/{id}
- GET    /api/conversations/{id}/messages
- POST   /api/conversations/{id}/messages {text, attachments?, role?}

Every endpoint honours ?scenario=error|timeout|401 to simulate failures.
"""

import logging
import uuid
from typing import Optional

import orjson
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from yspeaking.database import ConversationRecord, MessageRecord, get_session
from yspeaking.models.conversation import (
    CreateConversationRequest,
    RenameConversationRequest,
    SendMessageRequest,
)
from yspeaking.utils.db_helpers import get_or_404, simulate_scenario
from yspeaking.utils.exceptions import raise_bad_request
from yspeaking.utils.message_helpers import sanitize_attachments
from yspeaking.utils.time import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


async def apply_scenario(scenario: Optional[str] = None) -> None:
    """Dependency: simulate latency and failure scenarios."""
    await simulate_scenario(scenario)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@router.get("/conversations", dependencies=[Depends(apply_scenario)])
async def list_conversations(session: AsyncSession = Depends(get_session)):
    """List conversations, newest first."""
    result = await session.execute(
        select(ConversationRecord).order_by(ConversationRecord.seq.desc())
    )
    return [conv.to_dict() for conv in result.scalars().all()]


@router.post(
    "/conversations",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(apply_scenario)],
)
async def create_conversation(
    request: Optional[CreateConversationRequest] = None,
    session: AsyncSession = Depends(get_session),
):
    """Create a conversation. Without a title it is named "New chat N"."""
    title = (request.title or "").strip() if request else ""
    if not title:
        count = await session.scalar(select(func.count()).select_from(ConversationRecord))
        title = f"New chat {count + 1}"

    conv = ConversationRecord(id=_new_id("conv"), title=title, created_at=utcnow())
    session.add(conv)
    await session.commit()
    logger.info(f"Created conversation {conv.id}")
    return conv.to_dict()


@router.patch("/conversations/{conversation_id}", dependencies=[Depends(apply_scenario)])
async def rename_conversation(
    conversation_id: str,
    request: RenameConversationRequest,
    session: AsyncSession = Depends(get_session),
):
    """Rename a conversation."""
    title = request.title.strip()
    if not title:
        raise_bad_request("title required")

    conv = await get_or_404(session, ConversationRecord, conversation_id, "Conversation")
    conv.title = title
    await session.commit()
    return conv.to_dict()


@router.delete(
    "/conversations/{conversation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(apply_scenario)],
)
async def delete_conversation(
    conversation_id: str,
    session: AsyncSession = Depends(get_session),
):
    """Delete a conversation and its messages."""
    conv = await get_or_404(session, ConversationRecord, conversation_id, "Conversation")
    await session.execute(delete(MessageRecord).where(MessageRecord.conversation_id == conversation_id))
    await session.delete(conv)
    await session.commit()
    logger.info(f"Deleted conversation {conversation_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/conversations/{conversation_id}/messages", dependencies=[Depends(apply_scenario)])
async def list_messages(
    conversation_id: str,
    session: AsyncSession = Depends(get_session),
):
    """List the messages of a conversation in creation order."""
    result = await session.execute(
        select(MessageRecord)
        .where(MessageRecord.conversation_id == conversation_id)
        .order_by(MessageRecord.created_at, MessageRecord.seq)
    )
    return [msg.to_dict() for msg in result.scalars().all()]


@router.post(
    "/conversations/{conversation_id}/messages",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(apply_scenario)],
)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    session: AsyncSession = Depends(get_session),
):
    """
    Append a message to a conversation.

    Posting to an unknown conversation creates it.
    """
    text = request.text.strip()
    if not text:
        raise_bad_request("text required")

    conv = await session.scalar(
        select(ConversationRecord).where(ConversationRecord.id == conversation_id)
    )
    if conv is None:
        session.add(
            ConversationRecord(id=conversation_id, title=f"Chat {conversation_id}", created_at=utcnow())
        )

    attachments = sanitize_attachments(request.attachments)
    message = MessageRecord(
        id=_new_id("msg"),
        conversation_id=conversation_id,
        text=text,
        role=request.role,
        attachments=orjson.dumps([a.model_dump() for a in attachments]).decode() if attachments else None,
        created_at=utcnow(),
    )
    session.add(message)
    await session.commit()
    return message.to_dict()
