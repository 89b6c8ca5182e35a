"""Routes an addressed chat to its handler and returns the reply text."""

from __future__ import annotations

from dataclasses import replace

from .addressing import AddressingPolicy
from .logging import get_logger
from .patterns import PatternTable
from .types import IncomingChat

logger = get_logger(__name__)


class Dispatcher:
    """Addressing strip, pattern lookup, filter chain, handler call.

    `handle` needs no connection and has no side effects beyond what the
    handlers themselves do.
    """

    def __init__(self, table: PatternTable, addressing: AddressingPolicy) -> None:
        self.table = table
        self.addressing = addressing

    def handle(self, chat: IncomingChat) -> str:
        msg = self.addressing.strip(chat)
        match = self.table.resolve(msg.text)
        if match is None:
            fallback = self.table.fallback
            if fallback is None:
                return ""
            return fallback(msg)
        msg = replace(msg, text=match.text)
        for check in match.entry.filters:
            substitute, ok = check(msg)
            if not ok:
                logger.debug(
                    "mucbot.dispatch.filtered",
                    pattern=match.entry.pattern,
                    sender=msg.sender,
                )
                return substitute
        return match.entry.handler(msg)
