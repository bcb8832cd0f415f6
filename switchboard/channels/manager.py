from __future__ import annotations

import asyncio
from types import MappingProxyType
from typing import Iterable, Mapping

from switchboard.bus import MessageBus
from switchboard.channels.base import ChannelAdapter
from switchboard.core.errors import ConfigError, UnknownRouteError
from switchboard.domain.models import OutboundEnvelope
from switchboard.observability import metrics
from switchboard.observability.logging import bind_channel, get_logger

log = get_logger("manager")


class ChannelManager:
    """Owns every enabled channel adapter and routes outbound envelopes to them.

    The name -> adapter mapping is fixed at construction, before any task
    starts, and never changes afterwards.
    """

    def __init__(self, bus: MessageBus, adapters: Iterable[ChannelAdapter]):
        channels: dict[str, ChannelAdapter] = {}
        for adapter in adapters:
            if adapter.name in channels:
                raise ConfigError(f"duplicate channel name: {adapter.name}", channel=adapter.name)
            channels[adapter.name] = adapter
            log.info("channel_enabled", channel=adapter.name)
        self._bus = bus
        self._channels: Mapping[str, ChannelAdapter] = MappingProxyType(channels)

    @property
    def channels(self) -> Mapping[str, ChannelAdapter]:
        return self._channels

    def enabled_channels(self) -> list[str]:
        return list(self._channels)

    async def start_all(self, stop: asyncio.Event | None = None) -> None:
        """Run every adapter and the outbound dispatcher until ``stop`` is set.

        Without ``stop`` this runs until the calling task is cancelled. Either
        way every child task is cancelled and awaited before returning. If the
        outbound dispatcher dies first, its error is raised from here.
        """
        tasks = [
            asyncio.create_task(self._run_adapter(adapter), name=f"channel:{name}")
            for name, adapter in self._channels.items()
        ]
        dispatcher = asyncio.create_task(self._dispatch_outbound(), name="dispatch:outbound")
        stopped = asyncio.create_task((stop or asyncio.Event()).wait(), name="dispatch:stop")
        tasks += [dispatcher, stopped]
        try:
            await asyncio.wait({dispatcher, stopped}, return_when=asyncio.FIRST_COMPLETED)
            if stopped.done():
                log.info("shutdown_requested")
            else:
                exc = None if dispatcher.cancelled() else dispatcher.exception()
                log.error("dispatcher_exited", error=str(exc), error_type=type(exc).__name__)
                if exc is not None:
                    raise exc
                raise RuntimeError("outbound dispatcher exited")
        finally:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            log.info("channels_stopped")

    async def dispatch(self, env: OutboundEnvelope) -> bool:
        """Deliver one envelope. Returns False when it was dropped or failed."""
        try:
            adapter = self._route(env)
        except UnknownRouteError as e:
            log.warning("outbound_dropped", channel=env.channel_id, chat_id=env.chat_id, reason=str(e))
            metrics.outbound_dropped.labels(channel=env.channel_id).inc()
            return False
        try:
            await adapter.send(env)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("send_failed", channel=env.channel_id, chat_id=env.chat_id, error=str(e), error_type=type(e).__name__)
            metrics.outbound_messages.labels(channel=env.channel_id, status="failed").inc()
            return False
        metrics.outbound_messages.labels(channel=env.channel_id, status="sent").inc()
        return True

    def _route(self, env: OutboundEnvelope) -> ChannelAdapter:
        adapter = self._channels.get(env.channel_id)
        if adapter is None:
            raise UnknownRouteError(f"no channel registered as {env.channel_id!r}", channel=env.channel_id)
        return adapter

    async def _dispatch_outbound(self) -> None:
        async for env in self._bus.subscribe_outbound():
            await self.dispatch(env)

    async def _run_adapter(self, adapter: ChannelAdapter) -> None:
        bind_channel(adapter.name)
        log.info("channel_starting", channel=adapter.name)
        try:
            await adapter.start()
        except ConfigError as e:
            log.error("channel_config_error", channel=adapter.name, error=str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("channel_exited_with_error", channel=adapter.name, error=str(e), error_type=type(e).__name__)
        else:
            log.info("channel_exited", channel=adapter.name)
