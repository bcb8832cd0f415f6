import pytest, asyncio
from switchboard.core.errors import ConfigError, ReconnectRequested, SerializationError, TransportError
from switchboard.core.supervisor import ConnectionSupervisor, Session
from switchboard.domain.models import ConnectionState

class FakeConnection:
    def __init__(self, frames=()):
        self.frames = asyncio.Queue()
        for f in frames:
            self.frames.put_nowait(f)
        self.sent = []
        self.closed = False
    async def recv(self):
        frame = await self.frames.get()
        if isinstance(frame, Exception):
            raise frame
        return frame
    async def send(self, data):
        self.sent.append(data)
    async def close(self):
        self.closed = True

async def wait_for_state(sup, state, timeout=1.0):
    async def _poll():
        while sup.state != state:
            await asyncio.sleep(0)
    await asyncio.wait_for(_poll(), timeout)

@pytest.mark.asyncio
async def test_backoff_then_connect_state_sequence():
    conn = FakeConnection()
    dials = []
    async def dial():
        dials.append(1)
        if len(dials) <= 2:
            raise TransportError("refused")
        return conn
    async def on_frame(session, frame):
        pass
    states, delays = [], []
    async def fake_sleep(seconds):
        delays.append(seconds)
    sup = ConnectionSupervisor(dial, on_frame, reconnect_delay=5.0, sleep=fake_sleep, on_state_change=states.append)
    task = asyncio.create_task(sup.run())
    await wait_for_state(sup, ConnectionState.connected)
    assert states == [
        ConnectionState.connecting, ConnectionState.backoff,
        ConnectionState.connecting, ConnectionState.backoff,
        ConnectionState.connecting, ConnectionState.connected,
    ]
    assert delays == [5.0, 5.0]
    assert sup.connection is conn
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert sup.state == ConnectionState.disconnected
    assert conn.closed

@pytest.mark.asyncio
async def test_exponential_backoff_is_capped():
    async def dial():
        raise TransportError("down")
    async def on_frame(session, frame):
        pass
    delays = []
    async def fake_sleep(seconds):
        delays.append(seconds)
        if len(delays) == 5:
            raise asyncio.CancelledError()
    sup = ConnectionSupervisor(dial, on_frame, reconnect_delay=1.0, max_reconnect_delay=5.0, backoff_factor=2.0, sleep=fake_sleep)
    with pytest.raises(asyncio.CancelledError):
        await sup.run()
    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]

@pytest.mark.asyncio
async def test_cancel_during_backoff_exits_promptly():
    async def dial():
        raise TransportError("down")
    async def on_frame(session, frame):
        pass
    sup = ConnectionSupervisor(dial, on_frame, reconnect_delay=3600.0)
    task = asyncio.create_task(sup.run())
    await wait_for_state(sup, ConnectionState.backoff)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=1.0)
    assert sup.state == ConnectionState.disconnected

@pytest.mark.asyncio
async def test_config_error_stops_supervisor():
    async def dial():
        raise ConfigError("no url")
    async def on_frame(session, frame):
        pass
    sup = ConnectionSupervisor(dial, on_frame)
    with pytest.raises(ConfigError):
        await sup.run()
    assert sup.state == ConnectionState.disconnected

@pytest.mark.asyncio
async def test_read_error_and_reconnect_request_redial():
    first = FakeConnection(["bad", "reconnect"])
    second = FakeConnection(["hello", TransportError("reset")])
    third = FakeConnection()
    conns = [first, second, third]
    seen = []
    async def dial():
        return conns.pop(0)
    async def on_frame(session, frame):
        if frame == "bad":
            raise SerializationError("garbage")
        if frame == "reconnect":
            raise ReconnectRequested("server asked")
        seen.append(frame)
    delays = []
    async def fake_sleep(seconds):
        delays.append(seconds)
    sup = ConnectionSupervisor(dial, on_frame, reconnect_delay=2.0, sleep=fake_sleep)
    task = asyncio.create_task(sup.run())
    await asyncio.wait_for(_until(lambda: sup.connection is third), 1.0)
    assert seen == ["hello"]
    assert first.closed and second.closed
    assert delays == [2.0, 2.0]
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

async def _until(pred):
    while not pred():
        await asyncio.sleep(0)

@pytest.mark.asyncio
async def test_on_connect_and_static_heartbeat():
    conn = FakeConnection()
    async def dial():
        return conn
    async def on_frame(session, frame):
        pass
    async def on_connect(session):
        await session.send("identify")
    async def beat(session):
        await session.send("ping")
    sup = ConnectionSupervisor(dial, on_frame, on_connect=on_connect, heartbeat_interval=0.01, heartbeat=beat)
    task = asyncio.create_task(sup.run())
    await asyncio.wait_for(_until(lambda: conn.sent.count("ping") >= 2), 1.0)
    assert conn.sent[0] == "identify"
    session = sup.session
    assert session.heartbeat_running
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not session.heartbeat_running

@pytest.mark.asyncio
async def test_heartbeat_stops_when_connection_drops():
    conn = FakeConnection()
    session = Session(conn)
    beats = []
    async def beat(s):
        beats.append(1)
    session.start_heartbeat(0.01, beat)
    await asyncio.wait_for(_until(lambda: len(beats) >= 1), 1.0)
    await session.stop_heartbeat()
    count = len(beats)
    await asyncio.sleep(0.03)
    assert len(beats) == count
    with pytest.raises(ValueError):
        session.start_heartbeat(0, beat)

@pytest.mark.asyncio
async def test_send_without_connection_fails_fast():
    async def dial():
        raise TransportError("down")
    async def on_frame(session, frame):
        pass
    sup = ConnectionSupervisor(dial, on_frame)
    with pytest.raises(TransportError):
        await sup.send("x")
