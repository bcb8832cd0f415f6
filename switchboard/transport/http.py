"""JSON-over-HTTP helper that maps responses onto the channel error taxonomy."""
from __future__ import annotations

from typing import Any, Optional

import httpx

from switchboard.core.credentials import CredentialCache, TokenRefresher
from switchboard.core.errors import AuthError, DeliveryError, RateLimitError, SerializationError, TransportError
from switchboard.observability.logging import get_logger

log = get_logger("http")


class HttpTransport:
    """
    Sends JSON requests for one adapter.

    - connection failures and timeouts -> TransportError
    - 429 -> RateLimitError (retry_after from the Retry-After header or a JSON ``retry_after`` field)
    - 401 / 403 -> the cached token is dropped, AuthError
    - 5xx -> TransportError
    - other 4xx -> DeliveryError
    - a body that is not JSON -> SerializationError
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        credentials: Optional[CredentialCache] = None,
        token: str = "",
        auth_scheme: str = "Bearer",
        channel: str = "-",
    ):
        self._client = client
        self._credentials = credentials
        self._token = token
        self.auth_scheme = auth_scheme
        self.channel = channel

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        headers = await self._auth_headers()
        try:
            resp = await self._client.request(method, url, json=json, params=params, headers=headers)
        except httpx.TransportError as e:
            raise TransportError(f"{method} {url} failed: {e}", channel=self.channel) from e
        self._check(resp)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise SerializationError(f"response from {url} is not JSON", channel=self.channel) from e

    async def post_json(self, url: str, payload: Any) -> Any:
        return await self.request_json("POST", url, json=payload)

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request_json("GET", url, params=params)

    async def _auth_headers(self) -> dict[str, str]:
        if self._credentials is not None:
            token = await self._credentials.get_token()
        else:
            token = self._token
        if not token:
            return {}
        return {"Authorization": f"{self.auth_scheme} {token}"}

    def _check(self, resp: httpx.Response) -> None:
        status = resp.status_code
        if status < 400:
            return
        if status == 429:
            retry_after = _retry_after(resp)
            log.info("rate_limited", channel=self.channel, retry_after=retry_after)
            raise RateLimitError(f"HTTP 429 from {resp.url}", retry_after=retry_after, channel=self.channel)
        if status in (401, 403):
            if self._credentials is not None:
                self._credentials.invalidate()
            raise AuthError(f"HTTP {status} from {resp.url}", channel=self.channel)
        if status >= 500:
            raise TransportError(f"HTTP {status} from {resp.url}", channel=self.channel)
        raise DeliveryError(f"HTTP {status}: {resp.text[:200]}", channel=self.channel)


def _retry_after(resp: httpx.Response) -> float | None:
    header = resp.headers.get("Retry-After")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        value = body.get("retry_after")
        if isinstance(value, (int, float)):
            return float(value)
    return None


def client_credentials_refresher(
    client: httpx.AsyncClient,
    token_url: str,
    client_id: str,
    client_secret: str,
    *,
    token_field: str = "access_token",
    ttl_field: str = "expires_in",
    default_ttl: float = 7200.0,
) -> TokenRefresher:
    """Build an OAuth2 client-credentials refresh function for a CredentialCache."""

    async def refresh() -> tuple[str, float]:
        try:
            resp = await client.post(
                token_url,
                data={"grant_type": "client_credentials", "client_id": client_id, "client_secret": client_secret},
            )
        except httpx.TransportError as e:
            raise TransportError(f"token endpoint unreachable: {e}") from e
        if resp.status_code >= 500:
            raise TransportError(f"token endpoint returned HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise AuthError(f"token request rejected: HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as e:
            raise SerializationError("token response is not JSON") from e
        token = body.get(token_field) if isinstance(body, dict) else None
        if not token:
            raise AuthError(f"token response has no {token_field!r}")
        try:
            ttl = float(body.get(ttl_field, default_ttl))
        except (TypeError, ValueError):
            ttl = default_ttl
        return str(token), ttl

    return refresh
