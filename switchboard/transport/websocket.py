"""WebSocket connections for the ConnectionSupervisor, backed by ``websockets``."""
from __future__ import annotations

from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from switchboard.core.errors import AuthError, TransportError


class WebSocketConnection:
    """Adapts a websockets client connection to the supervisor's Connection protocol."""

    def __init__(self, ws: Any, channel: str = "-"):
        self._ws = ws
        self.channel = channel

    async def recv(self) -> Any:
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportError(f"connection closed: {e}", channel=self.channel) from e

    async def send(self, data: Any) -> None:
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            raise TransportError(f"connection closed: {e}", channel=self.channel) from e

    async def close(self) -> None:
        await self._ws.close()


async def dial_websocket(
    url: str,
    *,
    headers: dict[str, str] | None = None,
    open_timeout: float = 10.0,
    channel: str = "-",
) -> WebSocketConnection:
    try:
        ws = await websockets.connect(url, additional_headers=headers or {}, open_timeout=open_timeout)
    except InvalidStatus as e:
        status = e.response.status_code
        if status in (401, 403):
            raise AuthError(f"handshake rejected: HTTP {status}", channel=channel) from e
        raise TransportError(f"handshake failed: HTTP {status}", channel=channel) from e
    except (OSError, TimeoutError, WebSocketException) as e:
        raise TransportError(f"dial {url} failed: {e}", channel=channel) from e
    return WebSocketConnection(ws, channel=channel)
