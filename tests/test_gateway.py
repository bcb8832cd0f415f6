import pytest, asyncio
import httpx
from switchboard.channels.polling import HttpPollingChannel
from switchboard.channels.websocket import WebSocketChannel
from switchboard.config import ChannelSettings, Settings
from switchboard.core.gateway import Gateway, echo_agent

def settings(**channels):
    return Settings(console_enabled=True, json_logs=False, channels=channels)

@pytest.mark.asyncio
async def test_adapters_built_from_settings():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    gw = Gateway(settings(
        relay=ChannelSettings(enabled=True, kind="polling", url="http://relay/poll", send_url="http://relay/send"),
        bridge=ChannelSettings(enabled=True, kind="websocket", url="wss://bridge",
                               token_url="http://auth/token", client_id="id", client_secret="s"),
        off=ChannelSettings(enabled=False, url="wss://off"),
    ), client=client)
    channels = gw.manager.channels
    assert set(channels) == {"cli", "relay", "bridge"}
    assert isinstance(channels["relay"], HttpPollingChannel)
    assert isinstance(channels["bridge"], WebSocketChannel)
    assert channels["bridge"]._credentials is not None
    assert gw.status() == {"cli": "ready", "relay": "ready", "bridge": "disconnected"}
    await client.aclose()

@pytest.mark.asyncio
async def test_echo_round_trip_through_console():
    gw = Gateway(settings(), agent=echo_agent)
    await gw.start()
    try:
        assert await gw.console.submit("ping")
        reply = await asyncio.wait_for(gw.console.replies().__anext__(), 1.0)
        assert (reply.channel_id, reply.chat_id, reply.content) == ("cli", "direct", "ping")
    finally:
        await asyncio.wait_for(gw.close(), 1.0)

@pytest.mark.asyncio
async def test_agent_failure_does_not_stop_loop():
    calls = []
    async def flaky(env):
        calls.append(env.content)
        if env.content == "boom":
            raise RuntimeError("agent crashed")
        return "ok:" + env.content
    gw = Gateway(settings(), agent=flaky)
    await gw.start()
    try:
        await gw.console.submit("boom")
        await gw.console.submit("fine")
        reply = await asyncio.wait_for(gw.console.replies().__anext__(), 1.0)
        assert reply.content == "ok:fine"
        assert calls == ["boom", "fine"]
    finally:
        await gw.close()

@pytest.mark.asyncio
async def test_gateway_restarts_after_stop():
    gw = Gateway(settings(), agent=echo_agent)
    await gw.start()
    await asyncio.sleep(0.05)
    await gw.stop()
    await gw.start()
    try:
        assert await gw.console.submit("ping")
        reply = await asyncio.wait_for(gw.console.replies().__anext__(), 1.0)
        assert reply.content == "ping"
    finally:
        await gw.close()
    assert gw._client.is_closed
