"""Shared fixtures: an isolated in-memory store and an in-process API client."""

from typing import Callable, Iterable, Optional

import httpx
import orjson
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from yspeaking.config import settings
from yspeaking.database import Base, get_session
from yspeaking.main import app
from yspeaking.utils.seed import seed_default_store


@pytest.fixture
async def db_sessionmaker():
    """Fresh in-memory database per test, seeded with the sample conversations."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        await seed_default_store(session)

    yield maker
    await engine.dispose()


@pytest.fixture
async def api_client(db_sessionmaker):
    """httpx client talking to the FastAPI app in-process."""

    async def override_get_session():
        async with db_sessionmaker() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def fast_retries(monkeypatch):
    """No real waiting between retries."""
    monkeypatch.setattr(settings, "retry_base_delay", 0.0)
    monkeypatch.setattr(settings, "mock_latency_ms", 0)


def sse_body(*payloads: Optional[dict], done: bool = True) -> bytes:
    """Build an event-stream body from completion chunks."""
    body = "".join(f"data: {orjson.dumps(p).decode()}\n\n" for p in payloads)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode()


def delta_chunk(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def completion(text: str) -> dict:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": text}}]}


class ChunkSource:
    """ByteSource fed from a fixed list of chunks."""

    def __init__(self, chunks: Iterable[bytes]):
        self.chunks = list(chunks)
        self.released = 0

    async def read(self):
        if not self.chunks:
            return None
        return self.chunks.pop(0)

    async def release(self):
        self.released += 1


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
