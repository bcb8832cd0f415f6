from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from switchboard.bus import MessageBus
from switchboard.channels.base import AllowList, InboundPublisher
from switchboard.core.credentials import CredentialCache
from switchboard.core.dedup import DedupWindow
from switchboard.core.errors import AuthError, ConfigError, ReconnectRequested, SerializationError
from switchboard.core.retry import RateLimitedSender
from switchboard.core.supervisor import Connection, ConnectionSupervisor, Session
from switchboard.domain.models import ConnectionState, OutboundEnvelope
from switchboard.observability import metrics
from switchboard.observability.logging import get_logger
from switchboard.text.formatter import Markup, render
from switchboard.transport.websocket import dial_websocket

log = get_logger("channels.websocket")


class FrameKind(str, Enum):
    message = "message"
    hello = "hello"
    heartbeat_ack = "heartbeat_ack"
    reconnect = "reconnect"
    ignore = "ignore"


@dataclass
class Frame:
    """A decoded gateway frame, independent of the platform's wire format."""

    kind: FrameKind
    seq: int | None = None
    heartbeat_interval: float | None = None  # seconds
    message_id: str = ""
    sender_id: str = ""
    chat_id: str = ""
    content: str = ""
    media: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class FrameCodec(Protocol):
    def decode(self, raw: Any) -> Frame:
        """Decode one received frame; raise SerializationError when malformed."""
        ...

    def encode_auth(self, token: str) -> Any | None:
        ...

    def encode_heartbeat(self, seq: int | None) -> Any:
        ...

    def encode_send(self, env: OutboundEnvelope, text: str, reply_to: str | None) -> Any:
        ...


class JsonFrameCodec:
    """JSON bridge protocol: one object per frame, discriminated by ``type``.

    Received::

        {"type": "hello", "heartbeat_interval": 41250}          # milliseconds
        {"type": "message", "id": "...", "sender": "...", "chat": "...",
         "content": "...", "media": [...], "metadata": {...}, "seq": 7}
        {"type": "reconnect"}
        {"type": "heartbeat_ack"}

    Sent::

        {"type": "auth", "token": "..."}
        {"type": "heartbeat", "seq": 7}
        {"type": "send", "to": "...", "text": "...", "reply_to": "..."}
    """

    def decode(self, raw: Any) -> Frame:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"frame is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise SerializationError("frame is not a JSON object")

        seq = data.get("seq")
        seq = seq if isinstance(seq, int) else None
        kind = data.get("type")
        if kind == "hello":
            interval = data.get("heartbeat_interval")
            if not isinstance(interval, (int, float)) or interval <= 0:
                raise SerializationError("hello frame without a positive heartbeat_interval")
            return Frame(kind=FrameKind.hello, seq=seq, heartbeat_interval=interval / 1000.0)
        if kind == "message":
            sender = data.get("sender")
            chat = data.get("chat") or sender
            if not isinstance(sender, str) or not sender or not isinstance(chat, str):
                raise SerializationError("message frame without sender")
            media = data.get("media") or []
            metadata = data.get("metadata") or {}
            return Frame(
                kind=FrameKind.message,
                seq=seq,
                message_id=str(data.get("id") or ""),
                sender_id=sender,
                chat_id=chat,
                content=str(data.get("content") or ""),
                media=[str(m) for m in media] if isinstance(media, list) else [],
                metadata=metadata if isinstance(metadata, dict) else {},
            )
        if kind == "reconnect":
            return Frame(kind=FrameKind.reconnect, seq=seq)
        if kind == "heartbeat_ack":
            return Frame(kind=FrameKind.heartbeat_ack, seq=seq)
        return Frame(kind=FrameKind.ignore, seq=seq, metadata={"type": kind})

    def encode_auth(self, token: str) -> Any | None:
        return json.dumps({"type": "auth", "token": token})

    def encode_heartbeat(self, seq: int | None) -> Any:
        return json.dumps({"type": "heartbeat", "seq": seq})

    def encode_send(self, env: OutboundEnvelope, text: str, reply_to: str | None) -> Any:
        payload: dict[str, Any] = {"type": "send", "to": env.chat_id, "text": text}
        if reply_to:
            payload["reply_to"] = reply_to
        return json.dumps(payload)


Dialer = Callable[..., Awaitable[Connection]]


class WebSocketChannel:
    """Channel adapter for platforms reached over a persistent WebSocket.

    Resilience comes from the components it holds: a ConnectionSupervisor for
    reconnects and heartbeats, a DedupWindow for redelivered frames, an
    optional CredentialCache for the handshake token, and a RateLimitedSender
    around writes. The platform's frame format lives in the codec.
    """

    def __init__(
        self,
        name: str,
        bus: MessageBus,
        *,
        url: str,
        codec: Optional[FrameCodec] = None,
        allow_from: Iterable[str] = (),
        token: str = "",
        credentials: Optional[CredentialCache] = None,
        heartbeat_interval: float | None = None,
        reconnect_delay: float = 5.0,
        max_reconnect_delay: float = 60.0,
        backoff_factor: float = 1.0,
        dedup_capacity: int = 1000,
        max_message_len: int = 4000,
        markup: Markup = "plain",
        send_max_attempts: int = 3,
        send_retry_delay: float = 1.0,
        rate_limit_wait: float = 1.0,
        dial: Optional[Dialer] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.url = url
        self.max_message_len = max_message_len
        self.markup = markup
        self._token = token
        self._codec = codec or JsonFrameCodec()
        self._credentials = credentials
        self._dial_fn = dial or dial_websocket
        self._publisher = InboundPublisher(name, bus, AllowList(allow_from))
        self._dedup = DedupWindow(dedup_capacity)
        self.supervisor = ConnectionSupervisor(
            self._dial,
            self._on_frame,
            on_connect=self._on_connect,
            heartbeat_interval=heartbeat_interval,
            heartbeat=self._beat,
            reconnect_delay=reconnect_delay,
            max_reconnect_delay=max_reconnect_delay,
            backoff_factor=backoff_factor,
            sleep=sleep,
            channel=name,
        )
        self._sender = RateLimitedSender(
            self.supervisor.send,
            max_attempts=send_max_attempts,
            retry_delay=send_retry_delay,
            rate_limit_wait=rate_limit_wait,
            sleep=sleep,
            channel=name,
        )

    @property
    def state(self) -> ConnectionState:
        return self.supervisor.state

    async def start(self) -> None:
        if not self.url:
            raise ConfigError("url not configured", channel=self.name)
        log.info("websocket_channel_starting", channel=self.name, url=self.url)
        await self.supervisor.run()

    async def send(self, env: OutboundEnvelope) -> None:
        if not env.content.strip():
            return
        for i, text in enumerate(render(env.content, self.max_message_len, self.markup)):
            frame = self._codec.encode_send(env, text, env.reply_to if i == 0 else None)
            await self._sender.send(frame)

    async def _token_value(self) -> str:
        if self._credentials is not None:
            return await self._credentials.get_token()
        return self._token

    async def _dial(self) -> Connection:
        token = await self._token_value()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            return await self._dial_fn(self.url, headers=headers, channel=self.name)
        except AuthError:
            if self._credentials is not None:
                self._credentials.invalidate()
            raise

    async def _on_connect(self, session: Session) -> None:
        token = await self._token_value()
        if not token:
            return
        frame = self._codec.encode_auth(token)
        if frame is not None:
            await session.send(frame)

    async def _on_frame(self, session: Session, raw: Any) -> None:
        try:
            frame = self._codec.decode(raw)
        except SerializationError:
            metrics.inbound_dropped.labels(channel=self.name, reason="malformed").inc()
            raise
        if frame.seq is not None:
            session.data["seq"] = frame.seq

        if frame.kind == FrameKind.hello and frame.heartbeat_interval:
            session.start_heartbeat(frame.heartbeat_interval, self._beat)
        elif frame.kind == FrameKind.reconnect:
            raise ReconnectRequested("server requested reconnect", channel=self.name)
        elif frame.kind == FrameKind.message:
            await self._handle_message(frame)

    async def _handle_message(self, frame: Frame) -> None:
        if frame.message_id and self._dedup.seen(frame.message_id):
            metrics.inbound_dropped.labels(channel=self.name, reason="duplicate").inc()
            log.debug("duplicate_dropped", channel=self.name, message_id=frame.message_id)
            return
        content = frame.content.strip()
        if not content and not frame.media:
            return
        metadata = dict(frame.metadata)
        if frame.message_id:
            metadata.setdefault("message_id", frame.message_id)
        await self._publisher.publish(frame.sender_id, frame.chat_id, content, frame.media, metadata)

    async def _beat(self, session: Session) -> None:
        await session.send(self._codec.encode_heartbeat(session.data.get("seq")))
