"""Lazy, single-flight access token cache."""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from switchboard.core.errors import AuthError, ChannelError
from switchboard.domain.models import CredentialEntry
from switchboard.observability import metrics
from switchboard.observability.logging import get_logger

log = get_logger("credentials")

# Returns (token, seconds until the token expires).
TokenRefresher = Callable[[], Awaitable[tuple[str, float]]]


class CredentialCache:
    """
    Caches one short-lived access token for one adapter.

    The token is refreshed only when a caller needs it and the cached entry is
    within ``margin`` seconds of expiry. Callers that arrive while a refresh is
    running wait for that refresh instead of starting their own. A failed
    refresh raises the same error in every waiter and leaves the cache empty,
    so the next call tries again.
    """

    def __init__(
        self,
        refresh: TokenRefresher,
        *,
        margin: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        channel: str = "-",
    ):
        """
        Initialize credential cache.

        Args:
            refresh: Coroutine function fetching a new (token, ttl_seconds)
            margin: Seconds before expiry at which a token stops being served
            clock: Monotonic clock; expiry instants are measured on it
            channel: Owning adapter name, for logs and metrics
        """
        self._refresh = refresh
        self.margin = margin
        self._clock = clock
        self.channel = channel
        self._entry: CredentialEntry | None = None
        self._inflight: asyncio.Future[str] | None = None
        self._lock = asyncio.Lock()

    @property
    def entry(self) -> CredentialEntry | None:
        return self._entry

    async def get_token(self) -> str:
        async with self._lock:
            entry = self._entry
            if entry is not None and entry.is_valid(self._clock(), self.margin):
                return entry.token
            if self._inflight is None:
                self._inflight = asyncio.ensure_future(self._refresh_once())
                self._inflight.add_done_callback(_consume_exception)
            inflight = self._inflight
        # a cancelled caller must not abort the refresh other callers wait on
        return await asyncio.shield(inflight)

    def invalidate(self) -> None:
        """Drop the cached token, e.g. after the platform rejected it."""
        self._entry = None

    async def _refresh_once(self) -> str:
        try:
            token, ttl = await self._refresh()
            if not token:
                raise AuthError("token refresh returned an empty token", channel=self.channel)
        except ChannelError:
            metrics.token_refreshes.labels(channel=self.channel, status="failed").inc()
            log.warning("token_refresh_failed", channel=self.channel)
            raise
        except Exception as e:
            metrics.token_refreshes.labels(channel=self.channel, status="failed").inc()
            log.warning("token_refresh_failed", channel=self.channel, error=str(e), error_type=type(e).__name__)
            raise AuthError(f"token refresh failed: {e}", channel=self.channel) from e
        finally:
            self._inflight = None

        if ttl <= self.margin:
            log.warning("token_ttl_below_margin", channel=self.channel, ttl=ttl, margin=self.margin)
        self._entry = CredentialEntry(token=token, expires_at=self._clock() + ttl)
        metrics.token_refreshes.labels(channel=self.channel, status="ok").inc()
        log.info("token_refreshed", channel=self.channel, ttl=ttl)
        return token


def _consume_exception(fut: asyncio.Future) -> None:
    # every waiter re-raises the error; this only silences "never retrieved"
    if not fut.cancelled():
        fut.exception()
