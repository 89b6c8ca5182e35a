"""Session lifecycle: connect, receive and heartbeat loops, coordinated stop.

One `_Session` exists per successful `start()`. It owns the connection, the
broadcast stop event, the error conduit and the `stopped` flag, so loops from
an old session never observe a newer one.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from .config import BotConfig
from .connection import Connection, Connector
from .dispatch import Dispatcher
from .errors import (
    AlreadyStartedError,
    BotError,
    ConnectError,
    HeartbeatError,
    JoinError,
    ReceiveError,
    SessionError,
)
from .logging import get_logger
from .types import IncomingChat, OutgoingChat

logger = get_logger(__name__)

HEARTBEAT_INTERVAL_S = 30.0

DebugSink = Callable[[IncomingChat], None]


def print_debug(chat: IncomingChat) -> None:
    print(f"[debug] {chat!r}", flush=True)


@dataclass(eq=False)
class _Session:
    conn: Connection
    errors_tx: MemoryObjectSendStream[SessionError]
    errors_rx: MemoryObjectReceiveStream[SessionError]
    stop: anyio.Event = field(default_factory=anyio.Event)
    stopped: bool = False


def _wrap(error_type: type[SessionError], exc: Exception) -> SessionError:
    error = error_type(str(exc) or type(exc).__name__)
    error.__cause__ = exc
    return error


class SessionController:
    """Runs the receive and heartbeat loops for one connection at a time.

    Handlers run inline on the receive task: a slow handler delays every
    message behind it.
    """

    def __init__(
        self,
        config: BotConfig,
        dispatcher: Dispatcher,
        *,
        connector: Connector,
        debug_sink: DebugSink | None = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_S,
    ) -> None:
        self._config = config
        self._dispatcher = dispatcher
        self._connector = connector
        self._debug_sink = debug_sink or print_debug
        self._heartbeat_interval = heartbeat_interval
        self._session: _Session | None = None

    @property
    def stopped(self) -> bool:
        return self._session is None or self._session.stopped

    @property
    def errors(self) -> MemoryObjectReceiveStream[SessionError]:
        """Errors from the background loops of the current session.

        Unbuffered: a loop reporting an error waits until it is read or the
        session stops. Iteration ends when the session stops.
        """
        if self._session is None:
            raise BotError("errors are only available after start()")
        return self._session.errors_rx

    async def start(self, task_group: TaskGroup) -> None:
        """Connect, launch both loops in `task_group`, then join rooms.

        A failed room join stops the session again before `JoinError` is
        raised, so no loop outlives a failed start.
        """
        if not self.stopped:
            raise AlreadyStartedError("start() called again before stop()")
        try:
            conn = await self._connector(self._config)
        except ConnectError:
            raise
        except Exception as exc:
            raise ConnectError(str(exc) or type(exc).__name__) from exc

        errors_tx, errors_rx = anyio.create_memory_object_stream[SessionError](0)
        session = _Session(conn=conn, errors_tx=errors_tx, errors_rx=errors_rx)
        self._session = session
        task_group.start_soon(
            self._until_stopped, session, self._listen, name="mucbot.listen"
        )
        task_group.start_soon(
            self._until_stopped, session, self._heartbeat, name="mucbot.heartbeat"
        )
        logger.info(
            "mucbot.session.started",
            host=self._config.host,
            account_id=self._config.account_id,
        )

        for room in self._config.rooms:
            try:
                await conn.join(room, self._config.full_name)
            except Exception as exc:
                logger.error("mucbot.session.join_failed", room=room, error=str(exc))
                await self._stop_session(session)
                raise JoinError(room, str(exc) or type(exc).__name__) from exc
            logger.info("mucbot.session.joined", room=room)

    async def stop(self) -> None:
        session = self._session
        if session is None or session.stopped:
            return
        await self._stop_session(session)

    async def send(self, chat: OutgoingChat) -> None:
        """Send through the live connection; a no-op while stopped."""
        session = self._session
        if session is None or session.stopped:
            return
        await session.conn.send(chat)

    async def _stop_session(self, session: _Session) -> None:
        session.stopped = True
        session.stop.set()
        with anyio.CancelScope(shield=True):
            try:
                await session.conn.close()
            except Exception as exc:
                logger.debug("mucbot.session.close_failed", error=str(exc))
        session.errors_tx.close()
        logger.info("mucbot.session.stopped")

    async def _until_stopped(
        self,
        session: _Session,
        loop: Callable[[_Session], Awaitable[None]],
    ) -> None:
        async with anyio.create_task_group() as tg:

            async def _watch_stop() -> None:
                await session.stop.wait()
                tg.cancel_scope.cancel()

            tg.start_soon(_watch_stop)
            await loop(session)
            tg.cancel_scope.cancel()

    async def _forward(self, session: _Session, error: SessionError) -> None:
        if session.stopped:
            return
        try:
            await session.errors_tx.send(error)
        except anyio.ClosedResourceError:
            logger.debug("mucbot.session.error_dropped", error=str(error))
        except anyio.BrokenResourceError:
            logger.warning("mucbot.session.error_unread", error=str(error))

    async def _listen(self, session: _Session) -> None:
        while True:
            try:
                chat = await session.conn.recv()
            except Exception as exc:
                if session.stopped:
                    return
                logger.warning("mucbot.session.receive_failed", error=str(exc))
                await self._forward(session, _wrap(ReceiveError, exc))
                return
            if session.stopped:
                return
            if self._config.debug:
                self._debug_sink(chat)
            await self._on_chat(session, chat)

    async def _on_chat(self, session: _Session, chat: IncomingChat) -> None:
        if not self._dispatcher.addressing.should_handle(chat):
            return
        try:
            reply = self._dispatcher.handle(chat)
        except Exception:
            logger.exception("mucbot.dispatch.handler_failed", remote=chat.remote)
            return
        if not reply:
            return
        outgoing = chat.reply(reply)
        try:
            await session.conn.send(outgoing)
        except Exception as exc:
            if session.stopped:
                return
            logger.warning(
                "mucbot.session.reply_failed", target=outgoing.target, error=str(exc)
            )

    async def _heartbeat(self, session: _Session) -> None:
        while True:
            try:
                await session.conn.ping(self._config.account_id)
            except Exception as exc:
                if session.stopped:
                    return
                logger.warning("mucbot.session.heartbeat_failed", error=str(exc))
                await self._forward(session, _wrap(HeartbeatError, exc))
                return
            await anyio.sleep(self._heartbeat_interval)
