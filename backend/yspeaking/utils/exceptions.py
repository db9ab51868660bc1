"""
Exceptions for the chat client and HTTP helpers for the backend routes.

Client errors all derive from ChatClientError so callers can catch the whole
family while still telling an abort apart from a real failure:

    try:
        text = await provider.generate_reply(messages, session=session)
    except AbortedError:
        ...  # user pressed stop, keep the partial text
    except ChatClientError as e:
        ...  # show the failure

Route helpers:
    from yspeaking.utils.exceptions import raise_not_found, raise_bad_request

    raise_not_found("Conversation", conversation_id)
    raise_bad_request("text required")
"""

from typing import NoReturn, Optional

from fastapi import HTTPException, status


# ============================================================================
# Client Errors
# ============================================================================


class ChatClientError(Exception):
    """Base class for errors raised by the chat client."""

    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r})"


class RequestTimeoutError(ChatClientError):
    """A single request attempt exceeded its allotted time."""

    retryable = True


class NetworkError(ChatClientError):
    """Transport-level failure (connection refused, reset, dropped stream)."""

    retryable = True


class AbortedError(ChatClientError):
    """The caller cancelled the request. Never retried, never shown as a failure."""


class UpstreamError(ChatClientError):
    """Non-2xx response from the LLM endpoint, the proxy or the REST backend."""

    def __init__(self, status_code: int, body: str = "", message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Request failed {status_code}: {body or 'no body'}")


class FrameParseError(ChatClientError):
    """A `data:` payload that could not be interpreted. Reported, never fatal."""

    def __init__(self, message: str, data: str = ""):
        self.data = data
        super().__init__(message)


class EmptyResponseError(ChatClientError):
    """The non-streaming path returned no usable content."""


class StreamIncompleteError(ChatClientError):
    """The stream ended without the [DONE] sentinel while it was required."""


class ConfigurationError(ChatClientError):
    """Required client configuration is missing."""


class ResponseFormatError(ChatClientError):
    """The backend answered with a body that is not valid JSON."""


# ============================================================================
# HTTP Exception Helpers
# ============================================================================


def raise_unauthorized(detail: str = "Unauthorized") -> NoReturn:
    """Raise HTTP 401 Unauthorized with WWW-Authenticate header."""
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def raise_bad_request(detail: str) -> NoReturn:
    """Raise HTTP 400 Bad Request."""
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=detail,
    )


def raise_not_found(resource: str, id: int | str | None = None) -> NoReturn:
    """Raise HTTP 404 Not Found."""
    if id is not None:
        detail = f"{resource} with id {id} not found"
    else:
        detail = f"{resource} not found"
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=detail,
    )


def raise_internal_error(detail: str = "Internal server error") -> NoReturn:
    """Raise HTTP 500 Internal Server Error."""
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=detail,
    )
