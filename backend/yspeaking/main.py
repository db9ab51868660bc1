import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from yspeaking.config import settings

logger = logging.getLogger(__name__)
from yspeaking.routes import conversations, health, relay, uploads
from yspeaking.database import init_db, async_session
from yspeaking.utils.seed import seed_default_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle events"""
    await init_db()
    if not settings.qwen_api_key:
        logger.warning("QWEN_API_KEY is not set, the relay will answer 500")

    # Seed the mock conversations on first start
    async with async_session() as session:
        result = await seed_default_store(session)
        if result["status"] == "success":
            logger.info(
                f"Store seeded: {result['conversations_created']} conversations, "
                f"{result['messages_created']} messages"
            )

    yield

    # Shutdown: release the relay's upstream connections
    await relay.close_upstream_client()


app = FastAPI(
    title="YSpeaking Chat Backend",
    description="Mock conversation API and CORS relay for streaming chat completions",
    version="1.0.0",
    lifespan=lifespan,
)

# The relay sets its own CORS headers; this covers the mock API during dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(conversations.router, prefix="/api", tags=["conversations"])
app.include_router(uploads.router, prefix="/api", tags=["uploads"])
app.include_router(relay.router, prefix="/relay", tags=["relay"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("yspeaking.main:app", host=settings.host, port=settings.port, reload=settings.debug)
