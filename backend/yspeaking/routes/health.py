from fastapi import APIRouter

from yspeaking.config import settings


router = APIRouter()


@router.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "relay": {
            "configured": bool(settings.qwen_api_key),
            "model": settings.upstream_default_model,
        },
    }
