"""
Stream Session Controller.

One StreamSession per in-flight streaming request:

    Idle -> Connecting -> Streaming -> Completed | Aborted | Failed

The controller reads the byte source strictly sequentially, feeds the SSE
decoder, turns every event into a text delta and hands it to the caller's
callbacks together with the session id. Callers compare that id with the
session they currently consider active before touching shared state, so a
late delta from a stale or aborted session is never applied elsewhere.

Cancellation is cooperative: CancelToken.cancel() unblocks the pending read
at once, and no delta is delivered once the token has fired.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

import httpx
import orjson

from yspeaking.utils.deltas import DeltaAccumulator, extract_delta_text, is_completion_payload
from yspeaking.utils.exceptions import (
    AbortedError,
    ChatClientError,
    FrameParseError,
    NetworkError,
    StreamIncompleteError,
)
from yspeaking.utils.sse import SseDecoder, SseEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class CancelToken:
    """Caller-held cancellation handle for one session."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str = ""

    def cancel(self, reason: str = "Cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise AbortedError(self.reason)


async def race_cancel(awaitable: Awaitable[T], token: CancelToken) -> T:
    """Await `awaitable` unless the token fires first, then raise AbortedError.

    The losing operation is cancelled, so an in-flight network read is
    released instead of left dangling.
    """
    task = asyncio.ensure_future(awaitable)
    if token.cancelled:
        await _discard(task)
        raise AbortedError(token.reason)

    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    await _discard(task)
    raise AbortedError(token.reason)


async def _discard(task: asyncio.Future) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Cancelled operation finished with {e!r}")


def new_session_id() -> str:
    return f"sess_{uuid.uuid4().hex[:12]}"


@dataclass
class StreamCallbacks:
    """Consumer callbacks. Every call carries the owning session id."""

    on_delta: Optional[Callable[[str, str], None]] = None
    on_error: Optional[Callable[[str, Exception], None]] = None
    on_done: Optional[Callable[[str], None]] = None

    def delta(self, session_id: str, text: str) -> None:
        if self.on_delta:
            self.on_delta(session_id, text)

    def error(self, session_id: str, error: Exception) -> None:
        if self.on_error:
            self.on_error(session_id, error)

    def done(self, session_id: str) -> None:
        if self.on_done:
            self.on_done(session_id)


class ByteSource(Protocol):
    """A cancellable asynchronous byte stream."""

    async def read(self) -> Optional[bytes]:
        """Next chunk, or None at end of stream."""
        ...

    async def release(self) -> None:
        """Stop reading and free the underlying stream."""
        ...


class HttpxByteSource:
    """ByteSource over a streaming httpx response."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self._chunks = response.aiter_bytes()

    async def read(self) -> Optional[bytes]:
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            return None

    async def release(self) -> None:
        await self.response.aclose()


@dataclass
class StreamSession:
    """Ephemeral state of one streaming request. Never reused."""

    session_id: str = field(default_factory=new_session_id)
    cancel_token: CancelToken = field(default_factory=CancelToken)
    state: SessionState = SessionState.IDLE
    accumulator: DeltaAccumulator = field(default_factory=DeltaAccumulator)
    error: Optional[BaseException] = None
    release_count: int = 0

    @property
    def text(self) -> str:
        return self.accumulator.text

    @property
    def is_settled(self) -> bool:
        return self.state in (SessionState.COMPLETED, SessionState.ABORTED, SessionState.FAILED)

    def cancel(self, reason: str = "Cancelled by caller") -> None:
        self.cancel_token.cancel(reason)

    def fail(self, error: BaseException) -> None:
        self.state = SessionState.FAILED
        self.error = error

    async def release(self, source: ByteSource) -> None:
        """Release the reader; later calls are no-ops."""
        if self.release_count:
            return
        self.release_count += 1
        try:
            await source.release()
        except Exception as e:
            logger.debug(f"Releasing stream of {self.session_id} raised {e!r}")


async def consume_stream(
    session: StreamSession,
    source: ByteSource,
    callbacks: Optional[StreamCallbacks] = None,
    require_done: bool = False,
    decoder: Optional[SseDecoder] = None,
) -> str:
    """
    Drive one session through its Streaming state.

    Args:
        session: The owning session (its token is checked at every step)
        source: Byte source positioned at the start of the event stream
        callbacks: Consumer callbacks
        require_done: Fail with StreamIncompleteError when the stream ends
            without [DONE] instead of completing
        decoder: SSE decoder (a fresh one by default)

    Returns:
        The accumulated text

    Raises:
        AbortedError: the cancel token fired
        NetworkError / StreamIncompleteError: the stream failed mid-way
    """
    callbacks = callbacks or StreamCallbacks()
    decoder = decoder or SseDecoder()
    token = session.cancel_token
    session.state = SessionState.STREAMING

    try:
        while True:
            chunk = await race_cancel(source.read(), token)
            token.raise_if_cancelled()
            if chunk is None:
                break

            for event in decoder.feed(chunk):
                token.raise_if_cancelled()
                if event.is_done:
                    return _complete(session, callbacks)
                _apply_event(session, event, callbacks)

        leftover = decoder.close()
        if leftover.strip():
            logger.debug(f"Session {session.session_id} ended with an unterminated event")
        if require_done:
            raise StreamIncompleteError("Stream ended without [DONE]")
        return _complete(session, callbacks)

    except AbortedError as e:
        session.state = SessionState.ABORTED
        session.error = e
        raise
    except asyncio.CancelledError as e:
        session.state = SessionState.ABORTED
        session.error = e
        raise
    except ChatClientError as e:
        session.fail(e)
        callbacks.error(session.session_id, e)
        raise
    except httpx.HTTPError as e:
        error = NetworkError(f"Stream interrupted: {e!r}")
        session.fail(error)
        callbacks.error(session.session_id, error)
        raise error from e
    finally:
        await session.release(source)


def _complete(session: StreamSession, callbacks: StreamCallbacks) -> str:
    session.state = SessionState.COMPLETED
    callbacks.done(session.session_id)
    return session.text


def _apply_event(session: StreamSession, event: SseEvent, callbacks: StreamCallbacks) -> None:
    """Parse one event, accumulate its delta and notify the consumer.

    Undecodable or unrecognized payloads are reported and skipped.
    """
    data = event.data
    try:
        payload = orjson.loads(data)
    except orjson.JSONDecodeError as e:
        logger.debug(f"JSON parse error in session {session.session_id}: {e}")
        callbacks.error(session.session_id, FrameParseError(f"Invalid JSON frame: {e}", data))
        return

    if not is_completion_payload(payload):
        callbacks.error(
            session.session_id,
            FrameParseError("Frame is not a chat completion chunk", data),
        )
        return

    fragment = extract_delta_text(payload)
    if session.accumulator.append(fragment):
        callbacks.delta(session.session_id, fragment)
