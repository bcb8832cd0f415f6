import pytest, asyncio
from switchboard.bus import MessageBus
from switchboard.domain.models import InboundEnvelope, OutboundEnvelope

def _inbound(n):
    return InboundEnvelope(channel_id="x", chat_id="c", sender_id="u", content=f"m{n}")

@pytest.mark.asyncio
async def test_inbound_is_fifo():
    bus = MessageBus(max_queue_size=10)
    for i in range(3):
        await bus.publish_inbound(_inbound(i))
    assert bus.inbound_size() == 3
    stream = bus.subscribe_inbound()
    got = [(await stream.__anext__()).content for _ in range(3)]
    assert got == ["m0", "m1", "m2"]
    assert bus.inbound_size() == 0

@pytest.mark.asyncio
async def test_directions_are_independent():
    bus = MessageBus()
    await bus.publish_outbound(OutboundEnvelope(channel_id="x", chat_id="c", content="out"))
    assert bus.outbound_size() == 1
    assert bus.inbound_size() == 0

@pytest.mark.asyncio
async def test_full_queue_suspends_publisher():
    bus = MessageBus(max_queue_size=1)
    await bus.publish_inbound(_inbound(0))
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(bus.publish_inbound(_inbound(1)), timeout=0.05)
    assert bus.inbound_size() == 1

def test_second_consumer_rejected():
    bus = MessageBus()
    bus.subscribe_outbound()
    with pytest.raises(RuntimeError):
        bus.subscribe_outbound()
    # the other direction is still free
    bus.subscribe_inbound()

def test_queue_size_must_be_positive():
    with pytest.raises(ValueError):
        MessageBus(max_queue_size=0)

@pytest.mark.asyncio
async def test_closing_stream_releases_direction():
    bus = MessageBus()
    await bus.publish_outbound(OutboundEnvelope(channel_id="x", chat_id="c", content="a"))
    stream = bus.subscribe_outbound()
    assert (await stream.__anext__()).content == "a"
    await stream.aclose()
    # a new consumer may take over
    bus.subscribe_outbound()

@pytest.mark.asyncio
async def test_cancelled_consumer_releases_direction():
    bus = MessageBus()
    async def consume():
        async for _ in bus.subscribe_inbound():
            pass
    task = asyncio.create_task(consume())
    await asyncio.sleep(0.01)
    with pytest.raises(RuntimeError):
        bus.subscribe_inbound()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    stream = bus.subscribe_inbound()
    await bus.publish_inbound(_inbound(7))
    assert (await stream.__anext__()).content == "m7"
