from __future__ import annotations

import asyncio
from typing import AsyncIterator, TypeVar

from switchboard.domain.models import InboundEnvelope, OutboundEnvelope

T = TypeVar("T")


class MessageBus:
    """In-process pub/sub fabric between channel adapters and the agent core.

    - Adapters publish inbound envelopes; the agent core is the single inbound consumer.
    - The agent core publishes outbound envelopes; the channel manager is the single outbound consumer.
    - Both directions are bounded FIFO queues. A full queue suspends the publisher.
    """

    def __init__(self, max_queue_size: int = 100):
        if max_queue_size <= 0:
            raise ValueError("max_queue_size must be positive")
        self._inbound: asyncio.Queue[InboundEnvelope] = asyncio.Queue(maxsize=max_queue_size)
        self._outbound: asyncio.Queue[OutboundEnvelope] = asyncio.Queue(maxsize=max_queue_size)
        self._consumers: set[str] = set()

    async def publish_inbound(self, env: InboundEnvelope) -> None:
        await self._inbound.put(env)

    async def publish_outbound(self, env: OutboundEnvelope) -> None:
        await self._outbound.put(env)

    def subscribe_inbound(self) -> AsyncIterator[InboundEnvelope]:
        self._claim("inbound")
        return self._drain("inbound", self._inbound)

    def subscribe_outbound(self) -> AsyncIterator[OutboundEnvelope]:
        self._claim("outbound")
        return self._drain("outbound", self._outbound)

    def inbound_size(self) -> int:
        return self._inbound.qsize()

    def outbound_size(self) -> int:
        return self._outbound.qsize()

    def _claim(self, direction: str) -> None:
        # one consumer per direction keeps delivery order well defined
        if direction in self._consumers:
            raise RuntimeError(f"{direction} stream already has a consumer")
        self._consumers.add(direction)

    async def _drain(self, direction: str, queue: asyncio.Queue[T]) -> AsyncIterator[T]:
        # the claim ends with the stream: closing or cancelling the consumer frees the direction
        try:
            while True:
                item = await queue.get()
                queue.task_done()
                yield item
        finally:
            self._consumers.discard(direction)
