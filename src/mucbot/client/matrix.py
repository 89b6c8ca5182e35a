"""Matrix connection over matrix-nio.

Rooms joined through `join()` are group chats; every other joined room (for
example a room the bot was invited into) is treated as a direct chat. The
composite remote identifier is `room_id/display_name`.
"""

from __future__ import annotations

from collections import deque
from typing import Any

import nio

from ..config import BotConfig
from ..errors import ConnectError, ProtocolError
from ..logging import get_logger
from ..parse import split_remote
from ..types import ChatType, IncomingChat, OutgoingChat
from .content_builders import (
    _build_direct_room_request,
    _build_member_content,
    _build_text_content,
)

logger = get_logger(__name__)

DEVICE_NAME = "bot"
SYNC_TIMEOUT_MS = 30_000


def _homeserver_url(host: str) -> str:
    host = host.strip().rstrip("/")
    if "://" in host:
        return host
    return f"https://{host}"


def _failed(response: Any) -> bool:
    return isinstance(response, nio.ErrorResponse)


def _describe(response: Any) -> str:
    message = getattr(response, "message", None)
    return str(message or response.__class__.__name__)


class MatrixConnection:
    def __init__(
        self,
        client: nio.AsyncClient,
        *,
        accept_invites: bool = False,
        sync_timeout_ms: int = SYNC_TIMEOUT_MS,
    ) -> None:
        self._client = client
        self._accept_invites = accept_invites
        self._sync_timeout_ms = sync_timeout_ms
        self._since: str | None = None
        self._pending: deque[IncomingChat] = deque()
        self._group_rooms: set[str] = set()
        self._direct_rooms: dict[str, str] = {}

    async def prime(self) -> None:
        """Run the initial sync. Its timeline is backlog and is dropped."""
        response = await self._client.sync(timeout=0, full_state=True)
        if _failed(response):
            raise ProtocolError(f"initial sync failed: {_describe(response)}")
        self._since = response.next_batch

    async def recv(self) -> IncomingChat:
        while not self._pending:
            await self._sync_once()
        return self._pending.popleft()

    async def send(self, chat: OutgoingChat) -> None:
        room_id = await self._resolve_target(chat.target)
        response = await self._client.room_send(
            room_id,
            "m.room.message",
            _build_text_content(chat.text),
            ignore_unverified_devices=True,
        )
        if _failed(response):
            raise ProtocolError(f"send to {room_id} failed: {_describe(response)}")

    async def join(self, room: str, display_name: str) -> None:
        response = await self._client.join(room)
        if _failed(response):
            raise ProtocolError(f"join {room} failed: {_describe(response)}")
        room_id = response.room_id
        self._group_rooms.add(room_id)
        response = await self._client.room_put_state(
            room_id,
            "m.room.member",
            _build_member_content(display_name),
            state_key=self._client.user_id,
        )
        if _failed(response):
            raise ProtocolError(
                f"setting display name in {room_id} failed: {_describe(response)}"
            )

    async def ping(self, account_id: str) -> None:
        response = await self._client.whoami()
        if _failed(response):
            raise ProtocolError(f"keepalive failed: {_describe(response)}")
        logger.debug("mucbot.matrix.ping", account_id=account_id)

    async def close(self) -> None:
        await self._client.close()

    async def _sync_once(self) -> None:
        response = await self._client.sync(
            timeout=self._sync_timeout_ms, since=self._since
        )
        if _failed(response):
            raise ProtocolError(f"sync failed: {_describe(response)}")
        self._since = response.next_batch
        if self._accept_invites:
            for room_id in response.rooms.invite:
                await self._accept_invite(room_id)
        for room_id, info in response.rooms.join.items():
            for event in info.timeline.events:
                chat = self._to_chat(room_id, event)
                if chat is not None:
                    self._pending.append(chat)

    async def _accept_invite(self, room_id: str) -> None:
        response = await self._client.join(room_id)
        if _failed(response):
            logger.warning(
                "mucbot.matrix.invite_failed",
                room_id=room_id,
                error=_describe(response),
            )
            return
        logger.info("mucbot.matrix.invite_accepted", room_id=room_id)

    async def _resolve_target(self, target: str) -> str:
        bare = split_remote(target)[0]
        if not bare.startswith("@"):
            return bare
        room_id = self._direct_rooms.get(bare)
        if room_id is not None:
            return room_id
        response = await self._client.room_create(**_build_direct_room_request(bare))
        if _failed(response):
            raise ProtocolError(
                f"creating direct room with {bare} failed: {_describe(response)}"
            )
        self._direct_rooms[bare] = response.room_id
        return response.room_id

    def _remote(self, room_id: str, sender: str) -> str:
        room = self._client.rooms.get(room_id)
        name = room.user_name(sender) if room is not None else None
        return f"{room_id}/{name or sender}"

    def _to_chat(self, room_id: str, event: Any) -> IncomingChat | None:
        # our own sends come back in the timeline, under whatever name the
        # room shows for us
        if getattr(event, "sender", None) == self._client.user_id:
            return None
        if isinstance(event, nio.MegolmEvent):
            # undecryptable
            return IncomingChat(
                text="",
                remote=self._remote(room_id, event.sender),
                type=ChatType.ERROR,
            )
        if not isinstance(event, nio.RoomMessageText):
            return None
        chat_type = (
            ChatType.GROUPCHAT if room_id in self._group_rooms else ChatType.DIRECT
        )
        return IncomingChat(
            text=event.body,
            remote=self._remote(room_id, event.sender),
            type=chat_type,
        )


async def connect_matrix(config: BotConfig) -> MatrixConnection:
    """Log in, run the initial sync and return a ready connection."""
    client = nio.AsyncClient(
        _homeserver_url(config.host), config.account_id, ssl=config.tls
    )
    try:
        response = await client.login(config.password, device_name=DEVICE_NAME)
        if _failed(response):
            raise ConnectError(f"login failed: {_describe(response)}")
        connection = MatrixConnection(client, accept_invites=config.direct_messages)
        try:
            await connection.prime()
        except ProtocolError as exc:
            raise ConnectError(str(exc)) from exc
    except BaseException:
        await client.close()
        raise
    logger.info(
        "mucbot.matrix.connected",
        homeserver=client.homeserver,
        user_id=client.user_id,
        device_id=client.device_id,
    )
    return connection
