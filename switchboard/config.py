from __future__ import annotations
import re
from typing import Literal
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CHANNEL_NAME_RE = re.compile(r"^[a-z][a-z0-9_-]*$")

class ChannelSettings(BaseModel):
    """Settings for one channel adapter. Unused fields are ignored by the adapter kind."""
    enabled: bool = Field(default=False)
    kind: Literal["websocket", "polling"] = Field(default="websocket")

    # Endpoints
    url: str = Field(default="", description="WebSocket URL, or the polling endpoint.")
    send_url: str = Field(default="", description="HTTP endpoint for outbound messages (polling channels).")

    # Credentials: a static token, or OAuth2 client credentials refreshed on demand.
    token: str = Field(default="")
    token_url: str = Field(default="")
    client_id: str = Field(default="")
    client_secret: str = Field(default="")
    token_margin_s: float = Field(default=60.0, description="Stop serving a token this long before it expires.")

    # Access: empty allows every sender.
    allow_from: list[str] = Field(default_factory=list)

    # Connection lifecycle
    heartbeat_interval_s: float | None = Field(default=None, description="Fixed heartbeat if the server does not announce one.")
    reconnect_delay_s: float = Field(default=5.0)
    max_reconnect_delay_s: float = Field(default=60.0)
    backoff_factor: float = Field(default=1.0)
    poll_interval_s: float = Field(default=30.0)

    # Delivery
    dedup_capacity: int = Field(default=1000, gt=0)
    max_message_len: int = Field(default=4000, gt=0)
    markup: Literal["plain", "html"] = Field(default="plain")
    send_max_attempts: int = Field(default=3, ge=1)
    send_retry_delay_s: float = Field(default=1.0)
    rate_limit_wait_s: float = Field(default=1.0, description="Wait after a 429 that carried no retry-after.")

    @property
    def uses_client_credentials(self) -> bool:
        return bool(self.token_url and self.client_id and self.client_secret)

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SWB_", env_file=".env", env_nested_delimiter="__", extra="ignore")

    # Core
    instance_id: str = Field(default="swb-1", description="Unique instance id for tracing.")
    bus_queue_size: int = Field(default=100, gt=0, description="Capacity of each bus direction.")
    console_enabled: bool = Field(default=True, description="Register the local 'cli' channel.")
    http_timeout_s: float = Field(default=30.0)

    # Network
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=18790)
    metrics_path: str = Field(default="/metrics")
    health_path: str = Field(default="/healthz")

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True)

    # Channels, keyed by adapter name
    channels: dict[str, ChannelSettings] = Field(default_factory=dict)

    @field_validator("channels")
    @classmethod
    def _lowercase_names(cls, v: dict[str, ChannelSettings]) -> dict[str, ChannelSettings]:
        for name in v:
            if not CHANNEL_NAME_RE.match(name):
                raise ValueError(f"channel name {name!r} must be a lowercase identifier")
        return v

def load_settings() -> Settings:
    return Settings()
