"""Pattern table mapping text prefixes to handlers."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .types import Message

Handler = Callable[[Message], str]
"""Returns reply text for a message; "" means no reply."""

Filter = Callable[[Message], tuple[str, bool]]
"""Returns `(substitute_text, ok)`; `ok=False` vetoes the handler."""


@dataclass(frozen=True, slots=True)
class HandlerEntry:
    pattern: str
    handler: Handler
    filters: tuple[Filter, ...] = ()


@dataclass(frozen=True, slots=True)
class Match:
    text: str
    entry: HandlerEntry


class PatternTable:
    """Ordered prefix table.

    Entries are kept sorted longest pattern first so a short generic pattern
    never shadows a more specific one registered later. Patterns of equal
    length resolve in registration order.

    The table is meant to be filled before the bot starts. Registering while
    a session is dispatching is not supported.
    """

    def __init__(self) -> None:
        self._entries: list[HandlerEntry] = []
        self._fallback: Handler | None = None

    def register(self, pattern: str, handler: Handler, *filters: Filter) -> None:
        self._entries.append(HandlerEntry(pattern, handler, tuple(filters)))
        # list.sort is stable, including with reverse=True
        self._entries.sort(key=lambda entry: len(entry.pattern), reverse=True)

    def set_fallback(self, handler: Handler | None) -> None:
        self._fallback = handler

    @property
    def fallback(self) -> Handler | None:
        return self._fallback

    @property
    def entries(self) -> Sequence[HandlerEntry]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def resolve(self, text: str) -> Match | None:
        """Find the first entry whose pattern prefixes `text`.

        The returned match carries `text` with the pattern and surrounding
        whitespace removed.
        """
        for entry in self._entries:
            if text.startswith(entry.pattern):
                return Match(text=text[len(entry.pattern) :].strip(), entry=entry)
        return None
