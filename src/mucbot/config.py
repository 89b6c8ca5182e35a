"""Bot configuration: validation plus environment and TOML loading."""

from __future__ import annotations

import os
import ssl
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import ConfigError

ENV_ACCOUNT_ID = "MUCBOT_ACCOUNT_ID"
ENV_HOST = "MUCBOT_HOST"
ENV_PASSWORD = "MUCBOT_PASSWORD"
ENV_NICK = "MUCBOT_NICK"
ENV_FULLNAME = "MUCBOT_FULLNAME"
# Comma separated list of rooms to join.
ENV_ROOMS = "MUCBOT_ROOMS"
ENV_DIRECT_MESSAGES = "MUCBOT_DIRECT_MESSAGES"
# Presence alone enables debug output of raw inbound events.
ENV_DEBUG = "MUCBOT_DEBUG"
ENV_TLS_CA_FILE = "MUCBOT_TLS_CA_FILE"
ENV_TLS_VERIFY = "MUCBOT_TLS_VERIFY"

CONFIG_TABLE = "mucbot"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True, slots=True)
class BotConfig:
    """Immutable bot configuration.

    `tls` is handed to the connection as-is: an `ssl.SSLContext`, `False` to
    disable verification, or `None` for the client library's default.
    """

    account_id: str
    password: str
    nick: str
    full_name: str
    host: str
    rooms: tuple[str, ...] = ()
    tls: ssl.SSLContext | bool | None = None
    direct_messages: bool = False
    debug: bool = False

    def validate(self) -> None:
        if not self.host:
            raise ConfigError("missing host configuration")
        if not self.password:
            raise ConfigError("missing password configuration")
        if not self.nick:
            raise ConfigError("missing nick configuration")
        if not self.full_name:
            raise ConfigError("missing fullname configuration")
        if not self.account_id:
            raise ConfigError("missing account id configuration")


def _expand_path(s: str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(s)))


def _parse_bool(value: Any, *, name: str) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _split_rooms(value: str) -> tuple[str, ...]:
    return tuple(room.strip() for room in value.split(",") if room.strip())


def _build_tls(
    *, ca_file: str | None, verify: bool | None
) -> ssl.SSLContext | bool | None:
    if verify is False:
        return False
    if ca_file:
        path = _expand_path(ca_file)
        if not path.is_file():
            raise ConfigError(f"TLS CA file not found: {path}")
        return ssl.create_default_context(cafile=str(path))
    return None


def config_from_env(environ: Mapping[str, str] | None = None) -> BotConfig:
    """Build a configuration from environment variables.

    See the `ENV_*` constants for variable names. The full name defaults to
    the nick when unset.
    """
    env = os.environ if environ is None else environ
    account_id = env.get(ENV_ACCOUNT_ID, "").strip()
    host = env.get(ENV_HOST, "").strip()
    password = env.get(ENV_PASSWORD, "")
    nick = env.get(ENV_NICK, "").strip()
    if not account_id or not host or not password or not nick:
        raise ConfigError(
            f"missing env vars required - {ENV_ACCOUNT_ID} {ENV_HOST} "
            f"{ENV_PASSWORD} {ENV_NICK} optional - {ENV_ROOMS} {ENV_FULLNAME}"
        )
    raw_verify = env.get(ENV_TLS_VERIFY)
    verify = (
        None if raw_verify is None else _parse_bool(raw_verify, name=ENV_TLS_VERIFY)
    )
    raw_dm = env.get(ENV_DIRECT_MESSAGES)
    cfg = BotConfig(
        account_id=account_id,
        host=host,
        password=password,
        nick=nick,
        full_name=env.get(ENV_FULLNAME, "").strip() or nick,
        rooms=_split_rooms(env.get(ENV_ROOMS, "")),
        tls=_build_tls(ca_file=env.get(ENV_TLS_CA_FILE), verify=verify),
        direct_messages=(
            False if raw_dm is None else _parse_bool(raw_dm, name=ENV_DIRECT_MESSAGES)
        ),
        debug=ENV_DEBUG in env,
    )
    cfg.validate()
    return cfg


def _load_toml(path: Path) -> dict[str, Any]:
    import tomllib

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config at {path}: {exc}") from exc
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc


def _cfg_str(table: Mapping[str, Any], key: str) -> str:
    value = table.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"{CONFIG_TABLE}.{key} must be a string")
    return value.strip()


def load_config(
    path: str | Path, environ: Mapping[str, str] | None = None
) -> BotConfig:
    """Load a configuration from the `[mucbot]` table of a TOML file.

    `MUCBOT_PASSWORD` in the environment overrides the file's password so the
    secret can stay out of the file.
    """
    env = os.environ if environ is None else environ
    cfg_path = _expand_path(str(path))
    data = _load_toml(cfg_path)
    table = data.get(CONFIG_TABLE)
    if not isinstance(table, dict):
        raise ConfigError(f"missing [{CONFIG_TABLE}] table in {cfg_path}")

    rooms = table.get("rooms", [])
    if isinstance(rooms, str):
        rooms = _split_rooms(rooms)
    elif isinstance(rooms, list) and all(isinstance(r, str) for r in rooms):
        rooms = tuple(r.strip() for r in rooms if r.strip())
    else:
        raise ConfigError(f"{CONFIG_TABLE}.rooms must be a list of strings")

    tls_table = table.get("tls", {})
    if not isinstance(tls_table, dict):
        raise ConfigError(f"{CONFIG_TABLE}.tls must be a table")
    verify = tls_table.get("verify")
    ca_file = tls_table.get("ca_file")
    nick = _cfg_str(table, "nick")

    cfg = BotConfig(
        account_id=_cfg_str(table, "account_id"),
        host=_cfg_str(table, "host"),
        password=env.get(ENV_PASSWORD) or _cfg_str(table, "password"),
        nick=nick,
        full_name=_cfg_str(table, "full_name") or nick,
        rooms=rooms,
        tls=_build_tls(
            ca_file=ca_file if isinstance(ca_file, str) else None,
            verify=None if verify is None else _parse_bool(verify, name="tls.verify"),
        ),
        direct_messages=_parse_bool(
            table.get("direct_messages", False), name="direct_messages"
        ),
        debug=_parse_bool(table.get("debug", False), name="debug"),
    )
    cfg.validate()
    return cfg
