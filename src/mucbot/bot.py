"""The bot: handler registration plus session lifecycle."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream

from .addressing import AddressingPolicy
from .config import BotConfig
from .connection import Connector
from .dispatch import Dispatcher
from .errors import SessionError
from .patterns import Filter, Handler, PatternTable
from .session import HEARTBEAT_INTERVAL_S, DebugSink, SessionController
from .types import ChatType, IncomingChat, OutgoingChat


def _default_connector() -> Connector:
    from .client.matrix import connect_matrix

    return connect_matrix


class Bot:
    """A pattern-dispatch chat bot.

    Register handlers before starting; the table is not safe to change while
    a session is dispatching.

        bot = Bot(config)
        bot.add_handler("ping", lambda msg: "pong")
        async with bot.running():
            async for error in bot.errors:
                ...
    """

    def __init__(
        self,
        config: BotConfig,
        *,
        connector: Connector | None = None,
        debug_sink: DebugSink | None = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_S,
    ) -> None:
        config.validate()
        self.config = config
        self.table = PatternTable()
        self.addressing = AddressingPolicy(
            nick=config.nick,
            full_name=config.full_name,
            direct_messages=config.direct_messages,
        )
        self.dispatcher = Dispatcher(self.table, self.addressing)
        self.session = SessionController(
            config,
            self.dispatcher,
            connector=connector or _default_connector(),
            debug_sink=debug_sink,
            heartbeat_interval=heartbeat_interval,
        )

    def add_handler(self, pattern: str, handler: Handler, *filters: Filter) -> None:
        """Register a handler invoked when a message starts with `pattern`.

        All filters must pass before the handler runs.
        """
        self.table.register(pattern, handler, *filters)

    def add_help(self, handler: Handler) -> None:
        """Register the handler used when no pattern matches."""
        self.table.set_fallback(handler)

    def handle(self, chat: IncomingChat) -> str:
        return self.dispatcher.handle(chat)

    @property
    def stopped(self) -> bool:
        return self.session.stopped

    @property
    def errors(self) -> MemoryObjectReceiveStream[SessionError]:
        return self.session.errors

    async def start(self, task_group: TaskGroup) -> None:
        await self.session.start(task_group)

    async def stop(self) -> None:
        await self.session.stop()

    @asynccontextmanager
    async def running(self) -> AsyncIterator[Bot]:
        """Start in a task group of our own and stop on exit.

        A lone failure anywhere in the block is re-raised as-is
        rather than inside the task group's exception group.
        """
        try:
            async with anyio.create_task_group() as tg:
                await self.start(tg)
                try:
                    yield self
                finally:
                    await self.stop()
        except BaseExceptionGroup as group:
            if len(group.exceptions) == 1:
                raise group.exceptions[0]
            raise

    async def send_room(self, text: str, room: str) -> None:
        await self.session.send(
            OutgoingChat(text=text, type=ChatType.GROUPCHAT, target=room)
        )

    async def send_user(self, text: str, user: str) -> None:
        await self.session.send(
            OutgoingChat(text=text, type=ChatType.DIRECT, target=user)
        )
