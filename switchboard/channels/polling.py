from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from switchboard.bus import MessageBus
from switchboard.channels.base import AllowList, InboundPublisher
from switchboard.core.dedup import DedupWindow
from switchboard.core.errors import ChannelError, ConfigError, SerializationError
from switchboard.core.retry import RateLimitedSender
from switchboard.domain.models import OutboundEnvelope
from switchboard.observability import metrics
from switchboard.observability.logging import get_logger
from switchboard.text.formatter import Markup, render
from switchboard.transport.http import HttpTransport

log = get_logger("channels.polling")


@dataclass
class PolledMessage:
    message_id: str
    sender_id: str
    chat_id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


PageDecoder = Callable[[Any], tuple[list[PolledMessage], str | None]]


def decode_message_page(payload: Any) -> tuple[list[PolledMessage], str | None]:
    """Decode ``{"messages": [...], "cursor": "..."}``.

    Entries missing an id or sender are skipped; a payload of any other shape
    raises SerializationError.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("messages", []), list):
        raise SerializationError("poll response is not a message page")
    messages: list[PolledMessage] = []
    for item in payload.get("messages", []):
        if not isinstance(item, dict) or not item.get("id") or not item.get("sender_id"):
            log.debug("poll_entry_skipped", entry=item)
            continue
        chat_id = item.get("chat_id") or item.get("session_id") or item["sender_id"]
        messages.append(
            PolledMessage(
                message_id=str(item["id"]),
                sender_id=str(item["sender_id"]),
                chat_id=str(chat_id),
                content=str(item.get("content") or ""),
                metadata={"created_at": item.get("created_at")} if item.get("created_at") else {},
            )
        )
    cursor = payload.get("cursor")
    return messages, str(cursor) if cursor else None


class HttpPollingChannel:
    """Channel adapter for platforms that only offer a "fetch new messages" endpoint.

    Polls ``url`` every ``poll_interval`` seconds, carrying the last cursor the
    server returned. Overlapping pages are expected, so every message id goes
    through a DedupWindow before it reaches the bus.
    """

    def __init__(
        self,
        name: str,
        bus: MessageBus,
        transport: HttpTransport,
        *,
        url: str,
        send_url: str = "",
        allow_from: Iterable[str] = (),
        poll_interval: float = 30.0,
        dedup_capacity: int = 1000,
        max_message_len: int = 4000,
        markup: Markup = "plain",
        decode: PageDecoder = decode_message_page,
        send_max_attempts: int = 3,
        send_retry_delay: float = 1.0,
        rate_limit_wait: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.url = url
        self.send_url = send_url
        self.poll_interval = poll_interval
        self.max_message_len = max_message_len
        self.markup = markup
        self._transport = transport
        self._decode = decode
        self._sleep = sleep
        self._cursor: str | None = None
        self._publisher = InboundPublisher(name, bus, AllowList(allow_from))
        self._dedup = DedupWindow(dedup_capacity)
        self._sender = RateLimitedSender(
            self._post,
            max_attempts=send_max_attempts,
            retry_delay=send_retry_delay,
            rate_limit_wait=rate_limit_wait,
            sleep=sleep,
            channel=name,
        )

    @property
    def cursor(self) -> str | None:
        return self._cursor

    async def start(self) -> None:
        if not self.url:
            raise ConfigError("url not configured", channel=self.name)
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be positive", channel=self.name)
        log.info("polling_started", channel=self.name, interval=self.poll_interval)
        while True:
            try:
                await self.poll_once()
            except ConfigError:
                raise
            except ChannelError as e:
                log.warning("poll_failed", channel=self.name, error=str(e), error_type=type(e).__name__)
            await self._sleep(self.poll_interval)

    async def poll_once(self) -> int:
        """Fetch one page and publish what is new. Returns the number published."""
        params = {"cursor": self._cursor} if self._cursor else None
        payload = await self._transport.get_json(self.url, params=params)
        try:
            messages, cursor = self._decode(payload)
        except SerializationError:
            metrics.inbound_dropped.labels(channel=self.name, reason="malformed").inc()
            raise
        if cursor:
            self._cursor = cursor

        published = 0
        for msg in messages:
            if self._dedup.seen(msg.message_id):
                metrics.inbound_dropped.labels(channel=self.name, reason="duplicate").inc()
                continue
            content = msg.content.strip()
            if not content:
                continue
            metadata = {"message_id": msg.message_id, **msg.metadata}
            if await self._publisher.publish(msg.sender_id, msg.chat_id, content, None, metadata):
                published += 1
        return published

    async def send(self, env: OutboundEnvelope) -> None:
        if not self.send_url:
            raise ConfigError("send_url not configured", channel=self.name)
        if not env.content.strip():
            return
        for i, text in enumerate(render(env.content, self.max_message_len, self.markup)):
            payload: dict[str, Any] = {"chat_id": env.chat_id, "content": text}
            if i == 0 and env.reply_to:
                payload["reply_to"] = env.reply_to
            await self._sender.send(payload)

    async def _post(self, payload: dict[str, Any]) -> Any:
        return await self._transport.post_json(self.send_url, payload)
