"""
CORS relay to the upstream chat-completions API.

The browser cannot hold the upstream credential, so it posts here instead:
- OPTIONS -> 204 with permissive CORS headers
- POST    -> forwarded upstream with the server-held key; the upstream body
             is streamed back verbatim with CORS headers added
- other   -> 405

A caller that disconnects closes the upstream response, cancelling the
upstream request.
"""

import logging
from typing import AsyncIterator, Optional

import httpx
import orjson
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse

from yspeaking.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

# Hop-by-hop headers plus content-length, which no longer holds once re-chunked
EXCLUDED_RESPONSE_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "content-length",
}

_upstream_client: Optional[httpx.AsyncClient] = None


def get_upstream_client() -> httpx.AsyncClient:
    """Shared client for upstream calls (overridable in tests)."""
    global _upstream_client
    if _upstream_client is None or _upstream_client.is_closed:
        _upstream_client = httpx.AsyncClient()
    return _upstream_client


async def close_upstream_client() -> None:
    global _upstream_client
    if _upstream_client is not None:
        await _upstream_client.aclose()
        _upstream_client = None


def _text_response(text: str, status_code: int) -> Response:
    return PlainTextResponse(text, status_code=status_code, headers=CORS_HEADERS)


def relay_response_headers(upstream_headers: httpx.Headers) -> dict[str, str]:
    """Copy upstream headers, drop hop-by-hop ones and set the CORS headers."""
    headers = {
        key: value
        for key, value in upstream_headers.items()
        if key.lower() not in EXCLUDED_RESPONSE_HEADERS
    }
    headers.update(CORS_HEADERS)
    return headers


def build_upstream_payload(body: dict) -> dict:
    return {
        "model": body.get("model") or settings.upstream_default_model,
        "stream": body.get("stream") if body.get("stream") is not None else False,
        "messages": body.get("messages") or [],
    }


async def _relay_body(upstream: httpx.Response, request: Request) -> AsyncIterator[bytes]:
    """Yield the raw upstream body until it ends or the caller goes away."""
    try:
        async for chunk in upstream.aiter_raw():
            if await request.is_disconnected():
                logger.info("Relay caller disconnected, closing upstream stream")
                break
            yield chunk
    finally:
        await upstream.aclose()


@router.api_route(
    "/chat/completions",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
)
async def relay_chat_completions(
    request: Request,
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Response:
    """
    /relay/chat/completions - forward chat completions upstream

    Errors are plain text with CORS headers:
    - 405 for methods other than POST/OPTIONS
    - 500 when QWEN_API_KEY is not configured
    - 400 when the body is not a JSON object
    - 502 when the upstream cannot be reached
    """
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=CORS_HEADERS)

    if request.method != "POST":
        return _text_response("Method Not Allowed", 405)

    if not settings.qwen_api_key:
        logger.error("Relay called without QWEN_API_KEY configured")
        return _text_response("Missing QWEN_API_KEY", 500)

    try:
        body = orjson.loads(await request.body())
    except orjson.JSONDecodeError:
        return _text_response("Bad Request", 400)
    if not isinstance(body, dict):
        return _text_response("Bad Request", 400)

    upstream_request = client.build_request(
        "POST",
        settings.upstream_url,
        json=build_upstream_payload(body),
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {settings.qwen_api_key}",
        },
        timeout=httpx.Timeout(float(settings.provider_timeout), read=None),
    )

    try:
        upstream = await client.send(upstream_request, stream=True)
    except httpx.HTTPError as e:
        logger.error(f"Relay upstream request failed: {e!r}")
        return _text_response("Bad Gateway", 502)

    return StreamingResponse(
        _relay_body(upstream, request),
        status_code=upstream.status_code,
        headers=relay_response_headers(upstream.headers),
    )
