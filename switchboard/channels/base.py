from __future__ import annotations
from typing import Any, Iterable, Protocol, runtime_checkable
from switchboard.bus import MessageBus
from switchboard.domain.models import InboundEnvelope, OutboundEnvelope
from switchboard.observability import metrics
from switchboard.observability.logging import get_logger

log = get_logger("channels")

@runtime_checkable
class ChannelAdapter(Protocol):
    """Channel adapter interface.

    Adapters are owned by the ChannelManager and must be pure async.
    ``name`` is a stable lowercase identifier and doubles as the routing key prefix.
    ``start`` blocks until its task is cancelled, or raises ConfigError when the
    adapter cannot run at all. ``send`` raises when delivery fails.
    """
    name: str

    async def start(self) -> None:
        ...

    async def send(self, env: OutboundEnvelope) -> None:
        ...

class AllowList:
    """Sender allowlist. Empty means everyone is allowed.

    Sender ids of the form ``id|username`` match on the whole id or on any part.
    """
    def __init__(self, allowed: Iterable[str] = ()):
        self._allowed = frozenset(a for a in allowed if a)

    def __bool__(self) -> bool:
        return bool(self._allowed)

    def is_allowed(self, sender_id: str) -> bool:
        if not self._allowed:
            return True
        if sender_id in self._allowed:
            return True
        if "|" in sender_id:
            return any(part and part in self._allowed for part in sender_id.split("|"))
        return False

class InboundPublisher:
    """Checks a sender against an allowlist and puts its message on the bus."""
    def __init__(self, channel_id: str, bus: MessageBus, allow_list: AllowList | None = None):
        self.channel_id = channel_id
        self._bus = bus
        self._allow_list = allow_list or AllowList()

    async def publish(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        media: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        if not self._allow_list.is_allowed(sender_id):
            log.warning("access_denied", channel=self.channel_id, sender_id=sender_id)
            metrics.inbound_dropped.labels(channel=self.channel_id, reason="denied").inc()
            return False
        env = InboundEnvelope(
            channel_id=self.channel_id,
            chat_id=chat_id,
            sender_id=sender_id,
            content=content,
            media=media or [],
            metadata=metadata or {},
        )
        await self._bus.publish_inbound(env)
        metrics.inbound_messages.labels(channel=self.channel_id).inc()
        log.debug("inbound_published", channel=self.channel_id, chat_id=chat_id, preview=env.preview)
        return True
