"""
Resilient Request Executor

Runs one HTTP call with:
- A hard timeout per attempt
- Bounded exponential backoff (base, 2x base, 4x base, ...)
- Retries only for transport failures, timeouts and retryable status codes

Caller cancellation (AbortedError, task cancellation) is never retried.
When retries run out, the last failure is surfaced as-is: the last response
for a retryable status, or the last exception for a transport failure.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Optional, Union

import httpx

from yspeaking.config import settings
from yspeaking.services.stream_session import CancelToken, race_cancel
from yspeaking.utils.exceptions import (
    AbortedError,
    ChatClientError,
    NetworkError,
    RequestTimeoutError,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass
class RetryConfig:
    """Configuration for timeout and retry behavior."""

    timeout: float = 60.0  # seconds per attempt
    max_retries: int = 2
    base_delay: float = 0.5  # seconds
    jitter: bool = False
    retryable_status_codes: FrozenSet[int] = field(
        default_factory=lambda: RETRYABLE_STATUS_CODES
    )

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            timeout=float(settings.provider_timeout),
            max_retries=settings.request_max_retries,
            base_delay=settings.retry_base_delay,
            jitter=settings.retry_jitter,
        )

    @classmethod
    def for_uploads(cls) -> "RetryConfig":
        return cls(
            timeout=settings.upload_timeout,
            max_retries=settings.upload_max_retries,
            base_delay=settings.retry_base_delay,
            jitter=settings.retry_jitter,
        )


def calculate_backoff(attempt: int, base_delay: float, jitter: bool = False) -> float:
    """
    Delay before retry number `attempt` (1-based): base_delay * 2^(attempt-1).

    With jitter the delay varies by up to 25% either way.
    """
    delay = base_delay * (2 ** (attempt - 1))
    if jitter:
        jitter_range = delay * 0.25
        delay = delay + random.uniform(-jitter_range, jitter_range)
    return max(0.0, delay)


Failure = Union[httpx.Response, ChatClientError]


class RequestExecutor:
    """Executes HTTP requests with per-attempt timeout and retry."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig.from_settings()
        self._sleep = sleep

    async def execute(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        cancel_token: Optional[CancelToken] = None,
        **kwargs,
    ) -> httpx.Response:
        """
        Send a request, retrying retryable failures.

        Args:
            client: The httpx client to send with
            method: HTTP method
            url: Absolute URL or path relative to the client's base_url
            cancel_token: Optional caller cancellation handle
            **kwargs: Passed through to httpx (json, files, data, headers...)

        Returns:
            The first non-retryable response, or the last response once
            retries are exhausted

        Raises:
            RequestTimeoutError / NetworkError: last transport failure after retries
            AbortedError: the cancel token fired
        """
        last_failure: Optional[Failure] = None

        for attempt in range(self.config.max_retries + 1):
            if attempt > 0:
                delay = calculate_backoff(attempt, self.config.base_delay, self.config.jitter)
                self._log_retry(method, url, attempt, delay, last_failure)
                await self._wait(delay, cancel_token)

            try:
                response = await self._attempt(client, method, url, cancel_token, **kwargs)
            except (RequestTimeoutError, NetworkError) as e:
                last_failure = e
                continue

            if response.status_code in self.config.retryable_status_codes:
                last_failure = response
                continue

            return response

        if isinstance(last_failure, httpx.Response):
            logger.warning(
                f"{method} {url} still failing with status {last_failure.status_code} "
                f"after {self.config.max_retries + 1} attempts"
            )
            return last_failure
        raise last_failure

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        cancel_token: Optional[CancelToken],
        **kwargs,
    ) -> httpx.Response:
        """One attempt under the hard timeout."""
        call = asyncio.wait_for(
            client.request(method, url, **kwargs), timeout=self.config.timeout
        )
        try:
            if cancel_token is not None:
                return await race_cancel(call, cancel_token)
            return await call
        except AbortedError:
            raise
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RequestTimeoutError(
                f"{method} {url} timed out after {self.config.timeout}s"
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {url} failed: {e!r}") from e

    async def _wait(self, delay: float, cancel_token: Optional[CancelToken]) -> None:
        if cancel_token is None:
            await self._sleep(delay)
        else:
            await race_cancel(self._sleep(delay), cancel_token)

    def _log_retry(
        self, method: str, url: str, attempt: int, delay: float, failure: Optional[Failure]
    ) -> None:
        if isinstance(failure, httpx.Response):
            reason = f"status {failure.status_code}"
        else:
            reason = str(failure)
        logger.warning(
            f"Retry {attempt}/{self.config.max_retries} for {method} {url} "
            f"after {delay:.2f}s - {reason}"
        )
