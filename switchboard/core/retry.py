"""Bounded-retry send wrapper honoring server-supplied backoff."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Generic, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from switchboard.core.errors import AuthError, RateLimitError, TransportError
from switchboard.observability import metrics
from switchboard.observability.logging import get_logger

Req = TypeVar("Req")
Res = TypeVar("Res")
log = get_logger("retry")


class RateLimitedSender(Generic[Req, Res]):
    """
    Wraps a send coroutine with a small, bounded retry policy.

    - TransportError / AuthError: wait ``retry_delay`` and try again.
    - RateLimitError: wait the server's ``retry_after`` when it gave one,
      otherwise ``rate_limit_wait``, and try again.

    Every retry counts against ``max_attempts``; when the bound is reached the
    last error is raised to the caller. Anything else propagates at once.
    Requests are not deduplicated here.
    """

    def __init__(
        self,
        send: Callable[[Req], Awaitable[Res]],
        *,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        rate_limit_wait: float = 1.0,
        retryable_exceptions: tuple[Type[Exception], ...] = (TransportError, AuthError, RateLimitError),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        channel: str = "-",
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._send = send
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.rate_limit_wait = rate_limit_wait
        self.retryable_exceptions = retryable_exceptions
        self._sleep = sleep
        self.channel = channel

    async def send(self, request: Req) -> Res:
        """
        Send ``request``, retrying per the policy above.

        Returns:
            Whatever the wrapped send returned

        Raises:
            The last retryable error once attempts are exhausted, or any
            non-retryable error immediately
        """
        retry_config = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(self.retryable_exceptions),
            sleep=self._sleep,
            reraise=True,
        )

        attempt = 0
        async for attempt_state in retry_config:
            with attempt_state:
                attempt += 1
                try:
                    result = await self._send(request)
                except self.retryable_exceptions as e:
                    log.warning(
                        "send_attempt_failed",
                        channel=self.channel,
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    if attempt < self.max_attempts:
                        metrics.send_retries.labels(channel=self.channel, reason=type(e).__name__).inc()
                    raise
                if attempt > 1:
                    log.info("send_succeeded", channel=self.channel, attempts=attempt)
                return result

        # This should never be reached due to reraise=True
        raise RuntimeError("Retry logic failed unexpectedly")

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitError):
            if exc.retry_after is not None and exc.retry_after > 0:
                return exc.retry_after
            return self.rate_limit_wait
        return self.retry_delay
