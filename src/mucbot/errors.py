"""Error taxonomy for the bot and its session."""

from __future__ import annotations


class BotError(Exception):
    """Base class for all mucbot errors."""


class ConfigError(BotError):
    """A required configuration value is missing or invalid."""


class ConnectError(BotError):
    """The protocol connection could not be established."""


class JoinError(BotError):
    """Joining a configured room failed during start."""

    def __init__(self, room: str, reason: str) -> None:
        super().__init__(f"failed to join {room!r}: {reason}")
        self.room = room


class AlreadyStartedError(BotError):
    """start() was called on a running bot."""


class ProtocolError(BotError):
    """Raised by connections when the server reports a failure."""


class SessionError(BotError):
    """A background loop failed while the session was running."""


class ReceiveError(SessionError):
    """Reading the next inbound event failed."""


class HeartbeatError(SessionError):
    """The keepalive ping failed."""
