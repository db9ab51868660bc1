import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence, Union

import httpx
import orjson

from yspeaking.config import settings
from yspeaking.models.chat import ChatCompletionMessage
from yspeaking.services.request_executor import RequestExecutor, RetryConfig
from yspeaking.services.stream_session import (
    CancelToken,
    HttpxByteSource,
    SessionState,
    StreamCallbacks,
    StreamSession,
    consume_stream,
    race_cancel,
)
from yspeaking.utils.deltas import extract_message_text
from yspeaking.utils.exceptions import (
    AbortedError,
    ChatClientError,
    EmptyResponseError,
    NetworkError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

MessageInput = Union[ChatCompletionMessage, dict]


def serialize_messages(messages: Sequence[MessageInput]) -> list[dict]:
    """Convert messages to plain dicts in OpenAI wire format."""
    serialized = []
    for msg in messages:
        if isinstance(msg, ChatCompletionMessage):
            serialized.append(msg.model_dump(mode="json"))
        else:
            serialized.append(ChatCompletionMessage.model_validate(msg).model_dump(mode="json"))
    return serialized


class BaseProvider(ABC):
    """Abstract base class for chat-completion providers"""

    name: str

    def __init__(self, api_key: Optional[str], model: str):
        self.api_key = api_key
        self.model = model
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeout(self) -> float:
        """Get the configured provider timeout in seconds."""
        return float(settings.provider_timeout)

    @abstractmethod
    async def stream_chat(
        self,
        messages: Sequence[MessageInput],
        model: Optional[str] = None,
        session: Optional[StreamSession] = None,
        callbacks: Optional[StreamCallbacks] = None,
    ) -> str:
        """Stream a chat completion, returning the accumulated text"""
        pass

    @abstractmethod
    async def complete_chat(
        self,
        messages: Sequence[MessageInput],
        model: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> str:
        """Request a chat completion without streaming"""
        pass

    async def generate_reply(
        self,
        messages: Sequence[MessageInput],
        model: Optional[str] = None,
        session: Optional[StreamSession] = None,
        callbacks: Optional[StreamCallbacks] = None,
        fallback: bool = True,
    ) -> str:
        """
        Stream a reply, falling back to a non-streaming request on failure.

        Aborts are re-raised, as is any failure once the session's cancel
        token has fired. The fallback request is cancelled by the same token.
        Both paths return the full reply as one string.
        """
        session = session or StreamSession()
        try:
            return await self.stream_chat(messages, model=model, session=session, callbacks=callbacks)
        except AbortedError:
            raise
        except ChatClientError as e:
            if not fallback or session.cancel_token.cancelled:
                raise
            logger.warning(f"Stream failed for {self.name}, falling back to non-stream: {e}")
            return await self.complete_chat(messages, model=model, cancel_token=session.cancel_token)

    async def cleanup(self):
        """Cleanup HTTP client resources."""
        if self._client:
            await self._client.aclose()
            self._client = None


class OpenAIFormatProvider(BaseProvider):
    """Provider for endpoints speaking the OpenAI chat-completions format.

    Subclasses set `name` and resolve `endpoint`.
    """

    name: str = ""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        client: Optional[httpx.AsyncClient] = None,
        executor: Optional[RequestExecutor] = None,
    ):
        super().__init__(api_key, model)
        self._client = client
        self.executor = executor or RequestExecutor(RetryConfig.from_settings())

    @property
    def endpoint(self) -> str:
        raise NotImplementedError

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(headers=self._headers(), timeout=self.timeout)
        return self._client

    def _build_payload(
        self, messages: Sequence[MessageInput], model: Optional[str], stream: bool
    ) -> dict[str, Any]:
        return {
            "model": model or self.model,
            "stream": stream,
            "messages": serialize_messages(messages),
        }

    async def stream_chat(
        self,
        messages: Sequence[MessageInput],
        model: Optional[str] = None,
        session: Optional[StreamSession] = None,
        callbacks: Optional[StreamCallbacks] = None,
    ) -> str:
        """Open the event stream and hand it to the session controller."""
        session = session or StreamSession()
        callbacks = callbacks or StreamCallbacks()
        session.state = SessionState.CONNECTING

        try:
            payload = self._build_payload(messages, model, stream=True)
            client = self._get_client()
            request = client.build_request(
                "POST",
                self.endpoint,
                json=payload,
                headers=self._headers(),
                # No read timeout: a stream may idle between tokens and is
                # cancelled by the caller, not by a timer.
                timeout=httpx.Timeout(self.timeout, read=None),
            )
            response = await race_cancel(client.send(request, stream=True), session.cancel_token)
        except AbortedError as e:
            session.state = SessionState.ABORTED
            session.error = e
            raise
        except httpx.HTTPError as e:
            error = NetworkError(f"Could not reach {self.name}: {e!r}")
            session.fail(error)
            callbacks.error(session.session_id, error)
            raise error from e
        except ChatClientError as e:
            session.fail(e)
            callbacks.error(session.session_id, e)
            raise

        if not response.is_success:
            body = await self._read_error_body(response)
            error = UpstreamError(response.status_code, body)
            session.fail(error)
            callbacks.error(session.session_id, error)
            raise error

        return await consume_stream(
            session,
            HttpxByteSource(response),
            callbacks,
            require_done=settings.stream_require_done,
        )

    async def complete_chat(
        self,
        messages: Sequence[MessageInput],
        model: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> str:
        """Non-streaming request through the retrying executor."""
        payload = self._build_payload(messages, model, stream=False)
        response = await self.executor.execute(
            self._get_client(),
            "POST",
            self.endpoint,
            cancel_token=cancel_token,
            json=payload,
            headers=self._headers(),
        )
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text)

        try:
            data = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise EmptyResponseError(f"{self.name} returned a non-JSON body: {e}") from e

        content = extract_message_text(data)
        if not content:
            raise EmptyResponseError(f"{self.name} returned an empty reply")
        return content

    async def _read_error_body(self, response: httpx.Response) -> str:
        try:
            await response.aread()
            return response.text
        except httpx.HTTPError as e:
            logger.debug(f"Could not read error body from {self.name}: {e!r}")
            return ""
        finally:
            await response.aclose()
