from __future__ import annotations
import asyncio
from typing import AsyncIterator
from switchboard.bus import MessageBus
from switchboard.channels.base import InboundPublisher
from switchboard.domain.models import OutboundEnvelope
from switchboard.observability import metrics
from switchboard.observability.logging import get_logger

log = get_logger("channels.console")

CONSOLE_CHANNEL = "cli"
CONSOLE_SENDER = "user"
CONSOLE_CHAT = "direct"

class ConsoleChannel:
    """Local terminal channel.

    A REPL (outside this package) feeds lines through ``submit`` and reads
    replies from ``replies``. Replies travel on their own queue, separate from
    the outbound bus, so the dispatch loop never blocks on a terminal: when
    nobody reads and the queue is full, the oldest reply is dropped.
    """
    name = CONSOLE_CHANNEL

    def __init__(self, bus: MessageBus, max_queue_size: int = 100):
        self._publisher = InboundPublisher(self.name, bus)
        self._replies: asyncio.Queue[OutboundEnvelope] = asyncio.Queue(maxsize=max_queue_size)

    async def start(self) -> None:
        # Nothing to poll; input arrives through submit().
        await asyncio.Event().wait()

    async def send(self, env: OutboundEnvelope) -> None:
        while True:
            try:
                self._replies.put_nowait(env)
                return
            except asyncio.QueueFull:
                dropped = self._replies.get_nowait()
                metrics.outbound_messages.labels(channel=self.name, status="dropped").inc()
                log.warning("console_reply_dropped", channel=self.name, chat_id=dropped.chat_id, pending=self._replies.qsize())

    async def submit(self, text: str) -> bool:
        text = text.strip()
        if not text:
            return False
        return await self._publisher.publish(CONSOLE_SENDER, CONSOLE_CHAT, text)

    async def replies(self) -> AsyncIterator[OutboundEnvelope]:
        while True:
            yield await self._replies.get()
