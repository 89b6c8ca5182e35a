"""Content builders for Matrix events."""

from __future__ import annotations

from typing import Any


def _build_text_content(
    body: str,
    formatted_body: str | None = None,
) -> dict[str, Any]:
    """Build `m.room.message` content for a plain text message."""
    content: dict[str, Any] = {
        "msgtype": "m.text",
        "body": body,
    }
    if formatted_body:
        content["format"] = "org.matrix.custom.html"
        content["formatted_body"] = formatted_body
    return content


def _build_member_content(display_name: str) -> dict[str, Any]:
    """Build `m.room.member` content setting a per-room display name."""
    return {
        "membership": "join",
        "displayname": display_name,
    }


def _build_direct_room_request(user_id: str) -> dict[str, Any]:
    """Keyword arguments for creating a private chat with `user_id`."""
    return {
        "is_direct": True,
        "invite": [user_id],
    }
