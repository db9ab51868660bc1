"""
Client for the conversation REST backend.

Usage:
    api = ConversationApiClient("http://localhost:8000/api")
    conversations = await api.list_conversations()
    message = await api.send_message(conversations[0].id, "Hello")
    await api.close()
"""

import logging
from typing import Any, Optional, Sequence

import httpx
import orjson

from yspeaking.config import settings
from yspeaking.models.conversation import ChatAttachment, ChatMessageModel, Conversation
from yspeaking.services.request_executor import RequestExecutor, RetryConfig
from yspeaking.utils.exceptions import (
    NetworkError,
    RequestTimeoutError,
    ResponseFormatError,
    UpstreamError,
)
from yspeaking.utils.message_helpers import DraftFile, sanitize_attachments

logger = logging.getLogger(__name__)


class ConversationApiClient:
    """Typed wrapper over the /conversations and /uploads endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        executor: Optional[RequestExecutor] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._client = client
        self.upload_executor = executor or RequestExecutor(RetryConfig.for_uploads())

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=float(settings.provider_timeout))
        return self._client

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        """
        Send a JSON request and decode the response body.

        Returns None for 204 and empty bodies.

        Raises:
            UpstreamError: non-2xx status
            ResponseFormatError: the body is not JSON
            RequestTimeoutError / NetworkError: the backend could not be reached
        """
        kwargs = {}
        if json is not None:
            kwargs["content"] = orjson.dumps(json)
            kwargs["headers"] = {"Content-Type": "application/json"}

        url = self._url(path)
        try:
            response = await self._get_client().request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {url} failed: {e!r}") from e
        return self._decode(response)

    def _decode(self, response: httpx.Response) -> Any:
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text or response.reason_phrase)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise ResponseFormatError(f"Invalid JSON response: {e}") from e

    async def list_conversations(self) -> list[Conversation]:
        data = await self._request("GET", "/conversations")
        return [Conversation.model_validate(item) for item in data or []]

    async def create_conversation(self, title: Optional[str] = None) -> Conversation:
        data = await self._request("POST", "/conversations", json={"title": title})
        return Conversation.model_validate(data)

    async def rename_conversation(self, conversation_id: str, title: str) -> Conversation:
        data = await self._request("PATCH", f"/conversations/{conversation_id}", json={"title": title})
        return Conversation.model_validate(data)

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._request("DELETE", f"/conversations/{conversation_id}")

    async def list_messages(self, conversation_id: str) -> list[ChatMessageModel]:
        data = await self._request("GET", f"/conversations/{conversation_id}/messages")
        return [ChatMessageModel.model_validate(item) for item in data or []]

    async def send_message(
        self,
        conversation_id: str,
        text: str,
        attachments: Optional[Sequence[Any]] = None,
        role: str = "user",
    ) -> ChatMessageModel:
        """Persist a message. Attachments are reduced to their public fields."""
        payload: dict[str, Any] = {"text": text, "role": role}
        if attachments is not None:
            payload["attachments"] = [
                a.model_dump(mode="json", exclude_none=True) for a in sanitize_attachments(attachments)
            ]
        data = await self._request("POST", f"/conversations/{conversation_id}/messages", json=payload)
        return ChatMessageModel.model_validate(data)

    async def upload_attachments(self, files: Sequence[DraftFile]) -> list[ChatAttachment]:
        """
        Upload files as multipart form data.

        Sent as `files` parts plus a `meta` JSON field describing each file,
        with the upload timeout and retry budget.

        Returns:
            The stored attachment records, each carrying a download url
        """
        if not files:
            return []

        meta = [{"uid": f.uid, "name": f.name, "size": f.size, "type": f.type} for f in files]
        multipart = [
            ("files", (f.name, f.content, f.type or "application/octet-stream")) for f in files
        ]

        response = await self.upload_executor.execute(
            self._get_client(),
            "POST",
            self._url("/uploads"),
            files=multipart,
            data={"meta": orjson.dumps(meta).decode()},
        )
        if not response.is_success:
            raise UpstreamError(
                response.status_code,
                response.text,
                message=f"Upload failed {response.status_code}: {response.text or response.reason_phrase}",
            )

        data = self._decode(response) or {}
        attachments = sanitize_attachments(data.get("attachments"))
        logger.info(f"Uploaded {len(attachments)}/{len(files)} attachments")
        return attachments

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
