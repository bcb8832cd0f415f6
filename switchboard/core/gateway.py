from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, Optional
import httpx
from switchboard.bus import MessageBus
from switchboard.config import ChannelSettings, Settings
from switchboard.channels.base import ChannelAdapter
from switchboard.channels.console import ConsoleChannel
from switchboard.channels.manager import ChannelManager
from switchboard.channels.polling import HttpPollingChannel
from switchboard.channels.websocket import WebSocketChannel
from switchboard.core.credentials import CredentialCache
from switchboard.domain.models import InboundEnvelope, OutboundEnvelope
from switchboard.observability.logging import get_logger
from switchboard.transport.http import HttpTransport, client_credentials_refresher

log = get_logger("gateway")

# The agent core: takes one inbound envelope, returns the reply text (or None for no reply).
Agent = Callable[[InboundEnvelope], Awaitable[Optional[str]]]

async def echo_agent(env: InboundEnvelope) -> Optional[str]:
    return env.content

def build_channel(name: str, cfg: ChannelSettings, bus: MessageBus, client: httpx.AsyncClient) -> ChannelAdapter:
    """Create the adapter for one configured channel."""
    credentials: CredentialCache | None = None
    if cfg.uses_client_credentials:
        credentials = CredentialCache(
            client_credentials_refresher(client, cfg.token_url, cfg.client_id, cfg.client_secret),
            margin=cfg.token_margin_s,
            channel=name,
        )

    if cfg.kind == "websocket":
        return WebSocketChannel(
            name,
            bus,
            url=cfg.url,
            allow_from=cfg.allow_from,
            token=cfg.token,
            credentials=credentials,
            heartbeat_interval=cfg.heartbeat_interval_s,
            reconnect_delay=cfg.reconnect_delay_s,
            max_reconnect_delay=cfg.max_reconnect_delay_s,
            backoff_factor=cfg.backoff_factor,
            dedup_capacity=cfg.dedup_capacity,
            max_message_len=cfg.max_message_len,
            markup=cfg.markup,
            send_max_attempts=cfg.send_max_attempts,
            send_retry_delay=cfg.send_retry_delay_s,
            rate_limit_wait=cfg.rate_limit_wait_s,
        )

    transport = HttpTransport(client, credentials=credentials, token=cfg.token, channel=name)
    return HttpPollingChannel(
        name,
        bus,
        transport,
        url=cfg.url,
        send_url=cfg.send_url,
        allow_from=cfg.allow_from,
        poll_interval=cfg.poll_interval_s,
        dedup_capacity=cfg.dedup_capacity,
        max_message_len=cfg.max_message_len,
        markup=cfg.markup,
        send_max_attempts=cfg.send_max_attempts,
        send_retry_delay=cfg.send_retry_delay_s,
        rate_limit_wait=cfg.rate_limit_wait_s,
    )

class Gateway:
    """Owns the bus, the channel adapters and the task that runs them.

    The agent core is optional: without one, something else must consume
    ``bus.subscribe_inbound()`` and publish replies.
    """
    def __init__(self, settings: Settings, agent: Agent | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.agent = agent
        self.bus = MessageBus(max_queue_size=settings.bus_queue_size)
        self._client = client or httpx.AsyncClient(timeout=settings.http_timeout_s)
        self._owns_client = client is None

        adapters: list[ChannelAdapter] = []
        self.console: ConsoleChannel | None = None
        if settings.console_enabled:
            self.console = ConsoleChannel(self.bus)
            adapters.append(self.console)
        for name, cfg in settings.channels.items():
            if not cfg.enabled:
                log.info("channel_disabled", channel=name)
                continue
            adapters.append(build_channel(name, cfg, self.bus, self._client))
        self.manager = ChannelManager(self.bus, adapters)

        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        self._stop.clear()
        self._tasks.append(asyncio.create_task(self.manager.start_all(self._stop), name="channels"))
        if self.agent is not None:
            self._tasks.append(asyncio.create_task(self._agent_loop(), name="agent"))
        log.info("gateway_started", instance_id=self.settings.instance_id, channels=self.manager.enabled_channels())

    async def stop(self) -> None:
        """Stop channels and the agent loop. The gateway can be started again."""
        self._stop.set()
        for t in self._tasks:
            if t.get_name() == "agent":
                t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        log.info("gateway_stopped")

    async def close(self) -> None:
        """Stop, then release the shared HTTP client."""
        await self.stop()
        if self._owns_client:
            await self._client.aclose()

    def status(self) -> dict[str, str]:
        """Connection state of every registered channel."""
        out: dict[str, str] = {}
        for name, adapter in self.manager.channels.items():
            state = getattr(adapter, "state", None)
            out[name] = state.value if state is not None else "ready"
        return out

    async def _agent_loop(self) -> None:
        async for env in self.bus.subscribe_inbound():
            try:
                reply = await self.agent(env)
            except Exception as e:
                log.error("agent_failed", channel=env.channel_id, chat_id=env.chat_id, error=str(e), error_type=type(e).__name__)
                continue
            if not reply:
                continue
            message_id = env.metadata.get("message_id")
            await self.bus.publish_outbound(
                OutboundEnvelope.reply(env, reply, reply_to=str(message_id) if message_id is not None else None)
            )
