"""Command line entry point running a minimal ping bot."""

from __future__ import annotations

import os
import sys

import anyio

from .bot import Bot
from .config import BotConfig, config_from_env, load_config
from .errors import BotError, ConfigError
from .logging import get_logger, setup_logging

logger = get_logger(__name__)

# Path to a TOML config; the environment is used when unset.
ENV_CONFIG = "MUCBOT_CONFIG"
SORRY = "Sorry, I don't understand your request"


def _load_config() -> BotConfig:
    path = os.environ.get(ENV_CONFIG, "").strip()
    if path:
        return load_config(path)
    return config_from_env()


def build_bot(config: BotConfig) -> Bot:
    bot = Bot(config)
    bot.add_handler("ping", lambda msg: "pong")
    bot.add_handler("echo", lambda msg: " ".join(msg.args()))
    bot.add_help(lambda msg: SORRY)
    return bot


async def _run(bot: Bot) -> int:
    async with bot.running():
        async for error in bot.errors:
            logger.error("mucbot.cli.session_error", error=str(error))
            return 1
    return 0


def main() -> int:
    try:
        config = _load_config()
    except ConfigError as exc:
        print(f"Failed to load configuration: {exc}", file=sys.stderr)
        return 2
    setup_logging(debug=config.debug)
    bot = build_bot(config)
    try:
        return anyio.run(_run, bot)
    except BotError as exc:
        print(f"Failed to start: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0
