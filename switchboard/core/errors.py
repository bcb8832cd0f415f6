"""Error taxonomy shared by every channel adapter."""
from __future__ import annotations


class ChannelError(Exception):
    """Base class for adapter and routing errors."""

    def __init__(self, message: str = "", *, channel: str | None = None):
        super().__init__(message)
        self.channel = channel


class ConfigError(ChannelError):
    """Adapter configuration is unusable; the adapter refuses to start."""

    pass


class RetryableError(ChannelError):
    """Base exception for errors that should trigger retries."""

    pass


class TransportError(RetryableError):
    """Network or protocol failure; recovered by backoff and retry."""

    pass


class ReconnectRequested(TransportError):
    """The remote end asked the client to drop the connection and dial again."""

    pass


class AuthError(RetryableError):
    """Credentials were rejected or could not be refreshed."""

    pass


class RateLimitError(RetryableError):
    """Rate limit exceeded, should retry after the server-supplied delay."""

    def __init__(self, message: str = "", *, retry_after: float | None = None, channel: str | None = None):
        super().__init__(message, channel=channel)
        self.retry_after = retry_after


class DeliveryError(ChannelError):
    """The remote service rejected an outbound request; retrying will not help."""

    pass


class UnknownRouteError(ChannelError):
    """Outbound envelope addressed to a channel that is not registered."""

    pass


class SerializationError(ChannelError):
    """Inbound payload could not be decoded."""

    pass
