"""Pattern-dispatch chat bot for room and direct messages."""

from __future__ import annotations

from .addressing import AddressingPolicy
from .bot import Bot
from .config import BotConfig, config_from_env, load_config
from .connection import Connection, Connector
from .dispatch import Dispatcher
from .errors import (
    AlreadyStartedError,
    BotError,
    ConfigError,
    ConnectError,
    HeartbeatError,
    JoinError,
    ProtocolError,
    ReceiveError,
    SessionError,
)
from .patterns import Filter, Handler, HandlerEntry, Match, PatternTable
from .session import SessionController
from .types import ChatType, IncomingChat, Message, OutgoingChat

__all__ = [
    "AddressingPolicy",
    "AlreadyStartedError",
    "Bot",
    "BotConfig",
    "BotError",
    "ChatType",
    "ConfigError",
    "ConnectError",
    "Connection",
    "Connector",
    "Dispatcher",
    "Filter",
    "Handler",
    "HandlerEntry",
    "HeartbeatError",
    "IncomingChat",
    "JoinError",
    "Match",
    "Message",
    "OutgoingChat",
    "PatternTable",
    "ProtocolError",
    "ReceiveError",
    "SessionController",
    "SessionError",
    "config_from_env",
    "load_config",
]
