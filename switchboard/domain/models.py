"""Domain models for the switchboard."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Enums
# ============================================================================


class ConnectionState(str, Enum):
    """Lifecycle states of a supervised connection."""

    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"
    backoff = "backoff"


# ============================================================================
# Routing keys
# ============================================================================


def routing_key(channel: str, chat_id: str) -> str:
    """Build the key used to route a reply back to its conversation."""
    if not chat_id:
        return channel
    return f"{channel}:{chat_id}"


def parse_routing_key(key: str) -> tuple[str, str]:
    """Split a routing key into (channel, chat_id) on the first colon."""
    channel, sep, chat_id = key.partition(":")
    if not sep:
        return key, ""
    return channel, chat_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Envelopes
# ============================================================================


class InboundEnvelope(BaseModel):
    """Message received from a platform, on its way to the agent core."""

    model_config = ConfigDict(frozen=True)

    channel_id: str = Field(description="Adapter name the message arrived on")
    chat_id: str = Field(description="Chat / channel / DM identifier within the platform")
    sender_id: str = Field(description="Sender identifier within the platform")
    routing_key: str = Field(default="", description="Key used to route replies; derived when omitted")
    content: str = Field(default="", description="Message text")
    timestamp: datetime = Field(default_factory=_utcnow)
    media: list[str] = Field(default_factory=list, description="Local paths or references of attachments")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Channel-specific extras")

    @model_validator(mode="before")
    @classmethod
    def _derive_routing_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("routing_key"):
            data = dict(data)
            data["routing_key"] = routing_key(data.get("channel_id", ""), data.get("chat_id", ""))
        return data

    @property
    def preview(self) -> str:
        """Short snippet of the content for log lines."""
        if len(self.content) > 80:
            return self.content[:80] + "..."
        return self.content


class OutboundEnvelope(BaseModel):
    """Reply produced by the agent core, addressed to one channel and chat."""

    model_config = ConfigDict(frozen=True)

    channel_id: str = Field(description="Destination adapter name")
    chat_id: str = Field(description="Destination chat identifier")
    content: str = Field(default="", description="Text to send")
    reply_to: Optional[str] = Field(default=None, description="Platform message id to quote")
    media: list[str] = Field(default_factory=list, description="Local file paths to attach")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Channel-specific hints")

    @classmethod
    def reply(cls, inbound: InboundEnvelope, content: str, **kwargs: Any) -> "OutboundEnvelope":
        """Address a reply to the conversation an inbound envelope came from."""
        channel, chat_id = parse_routing_key(inbound.routing_key)
        return cls(channel_id=channel, chat_id=chat_id, content=content, **kwargs)


# ============================================================================
# Credentials
# ============================================================================


@dataclass(frozen=True)
class CredentialEntry:
    """Access token and the absolute instant it expires, on the owning cache's clock."""

    token: str
    expires_at: float

    def is_valid(self, now: float, margin: float) -> bool:
        return bool(self.token) and now < self.expires_at - margin
