from __future__ import annotations
import logging, sys
import structlog
from contextvars import ContextVar
from typing import Any

# Set once per adapter task by the ChannelManager; tasks spawned from there inherit it.
channel_var: ContextVar[str | None] = ContextVar("channel", default=None)

def add_channel(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag the line with the channel of the running adapter task, unless the call named one."""
    if not event_dict.get("channel"):
        event_dict["channel"] = channel_var.get() or "-"
    return event_dict

def drop_empty(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Remove fields that carry nothing (unset reply_to, missing chat ids)."""
    for key in [k for k, v in event_dict.items() if v is None or v == ""]:
        if key != "event":
            del event_dict[key]
    return event_dict

class InstanceStamp:
    """Adds the gateway instance id, so lines from several gateways can be told apart."""
    def __init__(self, instance_id: str):
        self.instance_id = instance_id

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("instance_id", self.instance_id)
        return event_dict

def build_processors(json_logs: bool = True, instance_id: str | None = None) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_channel,
        drop_empty,
    ]
    if instance_id:
        processors.append(InstanceStamp(instance_id))
    processors += [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
    ]
    return processors

def configure_logging(level: str = "INFO", json_logs: bool = True, instance_id: str | None = None) -> None:
    lvl = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=lvl, stream=sys.stdout, format="%(message)s")
    # websockets logs every handshake and keepalive at DEBUG
    logging.getLogger("websockets").setLevel(max(lvl, logging.INFO))

    structlog.configure(
        processors=build_processors(json_logs, instance_id),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        cache_logger_on_first_use=True,
    )

def get_logger(name: str = "switchboard"):
    return structlog.get_logger(name)

def bind_channel(channel: str | None) -> None:
    """Tag every log line emitted by the current task with its channel."""
    channel_var.set(channel)
