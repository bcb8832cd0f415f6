"""Reconnect / backoff / heartbeat state machine for long-lived connections."""
from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Optional, Protocol

from switchboard.core.errors import ConfigError, ReconnectRequested, SerializationError, TransportError
from switchboard.domain.models import ConnectionState
from switchboard.observability import metrics
from switchboard.observability.logging import get_logger

log = get_logger("supervisor")


class Connection(Protocol):
    """A frame-based duplex connection (WebSocket, stream socket, ...)."""

    async def recv(self) -> Any:
        ...

    async def send(self, data: Any) -> None:
        ...

    async def close(self) -> None:
        ...


Dial = Callable[[], Awaitable[Connection]]
FrameHandler = Callable[["Session", Any], Awaitable[None]]
SessionHook = Callable[["Session"], Awaitable[None]]


class Session:
    """One live connection plus the heartbeat that belongs to it.

    A session ends when its connection drops; its heartbeat ends with it.
    ``data`` is scratch space for protocol state that must not outlive the
    connection (last sequence number, session id, ...).
    """

    def __init__(self, connection: Connection, channel: str = "-"):
        self.connection = connection
        self.channel = channel
        self.data: dict[str, Any] = {}
        self._heartbeat: asyncio.Task | None = None

    async def send(self, data: Any) -> None:
        await self.connection.send(data)

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat is not None and not self._heartbeat.done()

    def start_heartbeat(self, interval: float, beat: SessionHook) -> None:
        """Tick ``beat`` every ``interval`` seconds until the connection ends."""
        if interval <= 0:
            raise ValueError("heartbeat interval must be positive")
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        self._heartbeat = asyncio.create_task(self._heartbeat_loop(interval, beat))
        log.debug("heartbeat_started", channel=self.channel, interval=interval)

    async def stop_heartbeat(self) -> None:
        task, self._heartbeat = self._heartbeat, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _heartbeat_loop(self, interval: float, beat: SessionHook) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await beat(self)
            except Exception as e:
                # a dead socket surfaces in the read loop; keep ticking until then
                log.warning("heartbeat_failed", channel=self.channel, error=str(e), error_type=type(e).__name__)


class ConnectionSupervisor:
    """
    Keeps one long-lived connection alive.

    States:
    - DISCONNECTED: not running (initial and terminal)
    - CONNECTING: dial in progress
    - CONNECTED: read loop running, heartbeat ticking if configured
    - BACKOFF: waiting before the next dial

    Read errors and server reconnect requests move to BACKOFF. Cancelling the
    task running :meth:`run` is the stop signal; it lands at whichever await
    the supervisor is suspended on and ends in DISCONNECTED.
    """

    def __init__(
        self,
        dial: Dial,
        on_frame: FrameHandler,
        *,
        on_connect: Optional[SessionHook] = None,
        heartbeat_interval: float | None = None,
        heartbeat: Optional[SessionHook] = None,
        reconnect_delay: float = 5.0,
        max_reconnect_delay: float = 60.0,
        backoff_factor: float = 1.0,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        channel: str = "-",
    ):
        """
        Initialize connection supervisor.

        Args:
            dial: Opens a new connection; raising ConfigError stops the supervisor
            on_frame: Handles one received frame; may raise ReconnectRequested
            on_connect: Runs once per connection before the read loop (auth, identify)
            heartbeat_interval: Fixed heartbeat period, if the platform does not send one
            heartbeat: Beat sent every ``heartbeat_interval`` seconds
            reconnect_delay: First backoff delay (seconds)
            max_reconnect_delay: Upper bound on the backoff delay
            backoff_factor: Multiplier applied to the delay after each failure (1.0 = fixed)
            on_state_change: Called with every new state
            sleep: Backoff wait; replaceable in tests
            channel: Owning adapter name, for logs and metrics
        """
        if reconnect_delay < 0:
            raise ValueError("reconnect_delay must not be negative")
        self._dial = dial
        self._on_frame = on_frame
        self._on_connect = on_connect
        self.heartbeat_interval = heartbeat_interval
        self._heartbeat = heartbeat
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max(max_reconnect_delay, reconnect_delay)
        self.backoff_factor = backoff_factor
        self._on_state_change = on_state_change
        self._sleep = sleep
        self.channel = channel

        self._state = ConnectionState.disconnected
        self._session: Session | None = None

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def connection(self) -> Connection | None:
        return self._session.connection if self._session else None

    async def send(self, data: Any) -> None:
        """Write to the current connection, failing fast while there is none."""
        session = self._session
        if session is None:
            raise TransportError("not connected", channel=self.channel)
        try:
            await session.send(data)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"write failed: {e}", channel=self.channel) from e

    async def run(self) -> None:
        """Dial, read, back off and redial until cancelled or misconfigured."""
        delay = self.reconnect_delay
        attempts = 0
        try:
            while True:
                self._set_state(ConnectionState.connecting)
                if attempts:
                    metrics.reconnects.labels(channel=self.channel).inc()
                attempts += 1
                try:
                    conn = await self._dial()
                except ConfigError:
                    log.error("dial_config_error", channel=self.channel)
                    raise
                except Exception as e:
                    log.warning("dial_failed", channel=self.channel, attempt=attempts, error=str(e), error_type=type(e).__name__)
                else:
                    delay = self.reconnect_delay
                    await self._serve(conn)

                self._set_state(ConnectionState.backoff)
                log.info("reconnect_scheduled", channel=self.channel, delay=delay)
                await self._sleep(delay)
                delay = min(delay * self.backoff_factor, self.max_reconnect_delay)
        finally:
            self._set_state(ConnectionState.disconnected)
            log.info("supervisor_stopped", channel=self.channel)

    async def _serve(self, conn: Connection) -> None:
        session = Session(conn, channel=self.channel)
        self._session = session
        self._set_state(ConnectionState.connected)
        log.info("channel_connected", channel=self.channel)
        try:
            if self._on_connect is not None:
                await self._on_connect(session)
            if self.heartbeat_interval and self._heartbeat is not None:
                session.start_heartbeat(self.heartbeat_interval, self._heartbeat)
            while True:
                frame = await conn.recv()
                try:
                    await self._on_frame(session, frame)
                except SerializationError as e:
                    log.debug("frame_dropped", channel=self.channel, error=str(e))
        except ConfigError:
            raise
        except ReconnectRequested as e:
            log.info("reconnect_requested", channel=self.channel, reason=str(e))
        except Exception as e:
            log.warning("connection_lost", channel=self.channel, error=str(e), error_type=type(e).__name__)
        finally:
            self._session = None
            await session.stop_heartbeat()
            await self._close(conn)

    async def _close(self, conn: Connection) -> None:
        try:
            await conn.close()
        except Exception as e:
            log.debug("close_failed", channel=self.channel, error=str(e))

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        for s in ConnectionState:
            metrics.connection_state.labels(channel=self.channel, state=s.value).set(1 if s == state else 0)
        if self._on_state_change is not None:
            self._on_state_change(state)
