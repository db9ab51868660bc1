from typing import AsyncGenerator

import orjson

from yspeaking.config import settings
from yspeaking.utils.time import to_iso, utcnow

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool


def _engine_options(url: str) -> dict:
    # An in-memory SQLite database lives as long as its single connection
    if ":memory:" in url or url.endswith("sqlite+aiosqlite://"):
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {}


engine = create_async_engine(settings.database_url, echo=False, **_engine_options(settings.database_url))
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class ConversationRecord(Base):
    """A conversation of the mock chat backend."""

    __tablename__ = "conversations"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # insertion order
    id = Column(String(64), unique=True, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title, "createdAt": to_iso(self.created_at)}

    def __repr__(self):
        return f"<ConversationRecord(id='{self.id}', title='{self.title}')>"


class MessageRecord(Base):
    """A message posted to a conversation."""

    __tablename__ = "messages"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, nullable=False)
    conversation_id = Column(
        String(64), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    text = Column(Text, nullable=False)
    role = Column(String(20), nullable=False, default="user")
    attachments = Column(Text, nullable=True)  # JSON list of attachment records
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "conversationId": self.conversation_id,
            "text": self.text,
            "role": self.role,
            "createdAt": to_iso(self.created_at),
        }
        if self.attachments:
            data["attachments"] = orjson.loads(self.attachments)
        return data

    def __repr__(self):
        return f"<MessageRecord(id='{self.id}', conversation='{self.conversation_id}', role='{self.role}')>"


class UploadRecord(Base):
    """An uploaded attachment file."""

    __tablename__ = "uploads"

    uid = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    size = Column(Integer, nullable=True)
    content_type = Column(String(100), nullable=True)
    data = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<UploadRecord(uid='{self.uid}', name='{self.name}')>"


async def init_db():
    """Initialize the database, creating all tables if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def reset_db():
    """Drop and recreate all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
