"""Argument parsing utilities for handlers."""

from __future__ import annotations

import shlex

_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})


def split_args(text: str) -> tuple[str, ...]:
    """Split the text left after a pattern into shell-style words.

    Chat clients like to swap straight quotes for typographic ones, so those
    are folded back before splitting. With unbalanced quotes the text is
    split on whitespace instead.
    """
    text = text.translate(_SMART_QUOTES)
    try:
        return tuple(shlex.split(text))
    except ValueError:
        return tuple(text.split())


def split_remote(remote: str) -> tuple[str, str]:
    """Split a `room-or-user/display-name` identifier.

    Returns `(bare, display_name)`. The display name is empty unless there
    are exactly two segments.
    """
    parts = remote.split("/")
    if len(parts) == 2:
        return parts[0], parts[1]
    return parts[0], ""
