"""Tests for session.py and bot.py - start/stop, loops and the error stream."""

from __future__ import annotations

import anyio
import pytest
import structlog.testing

from chat_fixtures import (
    FULL_NAME,
    FakeConnection,
    connector_for,
    group_chat,
    make_chat,
    make_config,
    wait_until,
)
from mucbot.bot import Bot
from mucbot.errors import (
    AlreadyStartedError,
    BotError,
    ConfigError,
    ConnectError,
    HeartbeatError,
    JoinError,
    ProtocolError,
    ReceiveError,
)
from mucbot.types import ChatType, IncomingChat


def _bot(conn: FakeConnection, **config_overrides) -> Bot:
    bot = Bot(
        make_config(**config_overrides),
        connector=connector_for(conn),
        heartbeat_interval=0.01,
    )
    bot.add_handler("ping", lambda msg: "pong")
    return bot


# --- construction ---


@pytest.mark.parametrize(
    ("field", "message"),
    [
        ("host", "missing host configuration"),
        ("password", "missing password configuration"),
        ("nick", "missing nick configuration"),
        ("full_name", "missing fullname configuration"),
        ("account_id", "missing account id configuration"),
    ],
)
def test_construction_requires_fields(field: str, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        Bot(make_config(**{field: ""}), connector=connector_for(FakeConnection()))


def test_new_bot_is_stopped() -> None:
    bot = Bot(make_config(), connector=connector_for(FakeConnection()))
    assert bot.stopped is True
    with pytest.raises(BotError):
        bot.errors


# --- start ---


@pytest.mark.anyio
async def test_start_joins_rooms_with_full_name() -> None:
    conn = FakeConnection()
    bot = _bot(conn, rooms=("!a:example.org", "!b:example.org"))

    async with anyio.create_task_group() as tg:
        await bot.start(tg)
        assert bot.stopped is False
        assert conn.joined == [
            ("!a:example.org", FULL_NAME),
            ("!b:example.org", FULL_NAME),
        ]
        await bot.stop()

    assert bot.stopped is True
    assert conn.closed is True


@pytest.mark.anyio
async def test_start_twice_fails() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    async with anyio.create_task_group() as tg:
        await bot.start(tg)
        with pytest.raises(AlreadyStartedError):
            await bot.start(tg)
        await bot.stop()


@pytest.mark.anyio
async def test_connect_failure_leaves_bot_stopped() -> None:
    async def _refuse(config):
        raise OSError("connection refused")

    bot = Bot(make_config(), connector=_refuse)

    async with anyio.create_task_group() as tg:
        with pytest.raises(ConnectError, match="connection refused"):
            await bot.start(tg)

    assert bot.stopped is True


@pytest.mark.anyio
async def test_join_failure_stops_loops() -> None:
    conn = FakeConnection()
    conn.join_errors["!b:example.org"] = ProtocolError("forbidden")
    bot = _bot(conn, rooms=("!a:example.org", "!b:example.org", "!c:example.org"))

    with anyio.fail_after(2):
        async with anyio.create_task_group() as tg:
            with pytest.raises(JoinError) as excinfo:
                await bot.start(tg)

    assert excinfo.value.room == "!b:example.org"
    assert isinstance(excinfo.value.__cause__, ProtocolError)
    assert conn.joined == [("!a:example.org", FULL_NAME)]
    assert conn.closed is True
    assert bot.stopped is True


@pytest.mark.anyio
async def test_restart_after_stop() -> None:
    conns = [FakeConnection(), FakeConnection()]

    async def _connect(config):
        return conns.pop(0)

    bot = Bot(make_config(), connector=_connect, heartbeat_interval=0.01)

    async with anyio.create_task_group() as tg:
        await bot.start(tg)
        first_errors = bot.errors
        await bot.stop()
        await bot.start(tg)
        assert bot.stopped is False
        assert bot.errors is not first_errors
        await bot.stop()


# --- receive loop ---


@pytest.mark.anyio
async def test_group_reply_sent_to_room() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    async with bot.running():
        await conn.deliver(group_chat("bot ping"))
        await wait_until(lambda: bool(conn.sent))

    reply = conn.sent[0]
    assert reply.text == "pong"
    assert reply.type is ChatType.GROUPCHAT
    assert reply.target == "!room:example.org"


@pytest.mark.anyio
async def test_direct_reply_uses_direct_kind() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    async with bot.running():
        await conn.deliver(make_chat("ping", remote="@alice:example.org/Alice"))
        await wait_until(lambda: bool(conn.sent))

    assert conn.sent[0].type is ChatType.DIRECT
    assert conn.sent[0].target == "@alice:example.org/Alice"


@pytest.mark.anyio
async def test_unaddressed_and_own_messages_ignored() -> None:
    conn = FakeConnection()
    bot = _bot(conn, direct_messages=False)
    bot.add_help(lambda msg: "help")

    async with bot.running():
        await conn.deliver(group_chat("ping"))
        await conn.deliver(group_chat("bot ping", sender=FULL_NAME))
        await conn.deliver(make_chat("ping"))
        await conn.deliver(make_chat("bot ping", chat_type=ChatType.ERROR))
        await conn.deliver(group_chat("bot ping"))
        await wait_until(lambda: bool(conn.sent))

    assert [chat.text for chat in conn.sent] == ["pong"]


@pytest.mark.anyio
async def test_events_processed_in_arrival_order() -> None:
    conn = FakeConnection()
    bot = _bot(conn)
    bot.add_handler("echo", lambda msg: msg.text)

    async with bot.running():
        for n in range(5):
            await conn.deliver(make_chat(f"echo {n}"))
        await wait_until(lambda: len(conn.sent) == 5)

    assert [chat.text for chat in conn.sent] == ["0", "1", "2", "3", "4"]


@pytest.mark.anyio
async def test_empty_reply_not_sent() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    async with bot.running():
        await conn.deliver(make_chat("unknown text"))
        await conn.deliver(make_chat("ping"))
        await wait_until(lambda: bool(conn.sent))

    assert [chat.text for chat in conn.sent] == ["pong"]


@pytest.mark.anyio
async def test_handler_exception_does_not_stop_loop() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    def boom(msg):
        raise ValueError("handler bug")

    bot.add_handler("boom", boom)

    async with bot.running():
        await conn.deliver(make_chat("boom"))
        await conn.deliver(make_chat("ping"))
        await wait_until(lambda: bool(conn.sent))

    assert [chat.text for chat in conn.sent] == ["pong"]


@pytest.mark.anyio
async def test_reply_send_failure_does_not_stop_loop() -> None:
    conn = FakeConnection()
    conn.send_error = ProtocolError("rate limited")
    bot = _bot(conn)
    bot.add_handler("echo", lambda msg: msg.text)

    async with bot.running():
        await conn.deliver(make_chat("ping"))
        await wait_until(lambda: conn.send_attempts == 1)
        conn.send_error = None
        await conn.deliver(make_chat("echo again"))
        await wait_until(lambda: bool(conn.sent))

    assert [chat.text for chat in conn.sent] == ["again"]


@pytest.mark.anyio
async def test_debug_sink_receives_raw_events() -> None:
    conn = FakeConnection()
    seen: list[IncomingChat] = []
    bot = Bot(
        make_config(debug=True),
        connector=connector_for(conn),
        debug_sink=seen.append,
        heartbeat_interval=0.01,
    )
    raw = group_chat("not for the bot")

    async with bot.running():
        await conn.deliver(raw)
        await wait_until(lambda: bool(seen))

    assert seen == [raw]


@pytest.mark.anyio
async def test_debug_sink_unused_without_debug() -> None:
    conn = FakeConnection()
    seen: list[IncomingChat] = []
    bot = Bot(
        make_config(),
        connector=connector_for(conn),
        debug_sink=seen.append,
        heartbeat_interval=0.01,
    )
    bot.add_handler("ping", lambda msg: "pong")

    async with bot.running():
        await conn.deliver(make_chat("ping"))
        await wait_until(lambda: bool(conn.sent))

    assert seen == []


@pytest.mark.anyio
async def test_receive_error_forwarded_and_loop_exits() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    async with bot.running():
        await conn.deliver(ProtocolError("stream reset"))
        with anyio.fail_after(2):
            error = await bot.errors.receive()

    assert isinstance(error, ReceiveError)
    assert isinstance(error.__cause__, ProtocolError)
    assert "stream reset" in str(error)


# --- heartbeat loop ---


@pytest.mark.anyio
async def test_heartbeat_pings_with_account_id() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    async with bot.running():
        await wait_until(lambda: len(conn.pings) >= 3)

    assert set(conn.pings) == {"@bot:example.org"}


@pytest.mark.anyio
async def test_heartbeat_failure_keeps_receive_loop_running() -> None:
    conn = FakeConnection()
    conn.ping_error = ProtocolError("no pong")
    bot = _bot(conn)

    async with bot.running():
        with anyio.fail_after(2):
            error = await bot.errors.receive()
        assert isinstance(error, HeartbeatError)
        pings = len(conn.pings)

        await conn.deliver(make_chat("ping"))
        await wait_until(lambda: bool(conn.sent))
        assert len(conn.pings) == pings

    assert conn.sent[0].text == "pong"


# --- stop ---


@pytest.mark.anyio
async def test_stop_is_idempotent() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    await bot.stop()
    async with anyio.create_task_group() as tg:
        await bot.start(tg)
        await bot.stop()
        await bot.stop()

    assert bot.stopped is True


@pytest.mark.anyio
async def test_stop_ends_error_stream() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    async with bot.running():
        errors = bot.errors

    received = [error async for error in errors]
    assert received == []


@pytest.mark.anyio
async def test_stop_unblocks_pending_error_delivery() -> None:
    conn = FakeConnection()
    conn.ping_error = ProtocolError("no pong")
    bot = _bot(conn)

    with anyio.fail_after(2):
        async with bot.running():
            await wait_until(lambda: bool(conn.pings))
            await anyio.sleep(0.05)

    assert bot.stopped is True


@pytest.mark.anyio
async def test_errors_after_stop_are_suppressed() -> None:
    conn = FakeConnection()
    conn.close_error = ProtocolError("already closed")
    bot = _bot(conn)

    with anyio.fail_after(2):
        async with bot.running():
            errors = bot.errors

    assert conn.closed is True
    assert [error async for error in errors] == []


class _SlowCloseConnection(FakeConnection):
    """recv only notices the shutdown once close() has run."""

    async def recv(self) -> IncomingChat:
        with anyio.CancelScope(shield=True):
            while not self.closed:
                await anyio.sleep(0.01)
        raise ProtocolError("connection closed")


@pytest.mark.anyio
async def test_receive_failure_during_stop_is_not_reported() -> None:
    conn = _SlowCloseConnection()
    bot = _bot(conn)

    with structlog.testing.capture_logs() as logs, anyio.fail_after(2):
        async with bot.running():
            errors = bot.errors

    assert conn.closed is True
    assert [error async for error in errors] == []
    assert "mucbot.session.receive_failed" not in [log["event"] for log in logs]


# --- running() ---


@pytest.mark.anyio
async def test_running_reraises_body_exception_unwrapped() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    with pytest.raises(KeyError, match="missing"), anyio.fail_after(2):
        async with bot.running():
            raise KeyError("missing")

    assert conn.closed is True
    assert bot.stopped is True


@pytest.mark.anyio
async def test_running_reraises_bot_error_from_body() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    with pytest.raises(BotError, match="gave up"), anyio.fail_after(2):
        async with bot.running():
            raise BotError("gave up")

    assert bot.stopped is True


@pytest.mark.anyio
async def test_running_reraises_join_error_with_cause() -> None:
    conn = FakeConnection()
    conn.join_errors["!a:example.org"] = ProtocolError("forbidden")
    bot = _bot(conn, rooms=("!a:example.org",))

    with pytest.raises(JoinError) as excinfo, anyio.fail_after(2):
        async with bot.running():
            pytest.fail("body must not run after a failed start")

    assert isinstance(excinfo.value.__cause__, ProtocolError)
    assert conn.closed is True


@pytest.mark.anyio
async def test_send_helpers_noop_when_stopped() -> None:
    conn = FakeConnection()
    bot = _bot(conn)

    await bot.send_room("hello", "!room:example.org")
    await bot.send_user("hello", "@alice:example.org")
    assert conn.sent == []

    async with bot.running():
        await bot.send_room("hello room", "!room:example.org")
        await bot.send_user("hello you", "@alice:example.org")

    assert [(c.text, c.type, c.target) for c in conn.sent] == [
        ("hello room", ChatType.GROUPCHAT, "!room:example.org"),
        ("hello you", ChatType.DIRECT, "@alice:example.org"),
    ]
