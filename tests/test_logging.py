import contextvars
import json
import pytest, asyncio
from switchboard.observability.logging import (
    InstanceStamp, add_channel, bind_channel, build_processors, drop_empty,
)

def test_add_channel_uses_bound_channel():
    def run():
        bind_channel("telegram")
        return add_channel(None, "info", {"event": "x"})
    assert contextvars.copy_context().run(run)["channel"] == "telegram"

def test_add_channel_keeps_explicit_and_defaults():
    assert add_channel(None, "info", {"event": "x", "channel": "slack"})["channel"] == "slack"
    assert contextvars.copy_context().run(add_channel, None, "info", {"event": "x"})["channel"] == "-"

def test_drop_empty():
    assert drop_empty(None, "info", {"event": "x", "reply_to": None, "chat_id": "", "n": 0}) == {"event": "x", "n": 0}

@pytest.mark.asyncio
async def test_channel_bound_per_task():
    async def adapter(name):
        bind_channel(name)
        await asyncio.sleep(0)
        return add_channel(None, "info", {"event": "x"})["channel"]
    assert await asyncio.gather(adapter("a"), adapter("b")) == ["a", "b"]

def test_json_pipeline_stamps_instance():
    event = {"event": "channel_connected", "reply_to": None}
    for proc in build_processors(json_logs=True, instance_id="swb-7"):
        event = proc(None, "info", event)
    line = json.loads(event)
    assert line["instance_id"] == "swb-7"
    assert line["level"] == "info"
    assert "reply_to" not in line
    assert InstanceStamp("a")(None, "info", {"instance_id": "b"})["instance_id"] == "b"
