"""Boundary between the bot core and a protocol client."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from .config import BotConfig
from .types import IncomingChat, OutgoingChat


class Connection(Protocol):
    """A live protocol session.

    Every method raises on failure. `recv` blocks until the next inbound
    event; no timeout is applied by the caller.
    """

    async def recv(self) -> IncomingChat: ...

    async def send(self, chat: OutgoingChat) -> None: ...

    async def join(self, room: str, display_name: str) -> None: ...

    async def ping(self, account_id: str) -> None: ...

    async def close(self) -> None: ...


Connector = Callable[[BotConfig], Awaitable[Connection]]
