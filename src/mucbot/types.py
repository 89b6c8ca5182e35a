"""Chat event and message types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .parse import split_args, split_remote


class ChatType(str, Enum):
    GROUPCHAT = "groupchat"
    DIRECT = "chat"
    ERROR = "error"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class IncomingChat:
    """An inbound event as delivered by a connection.

    `remote` is the composite `room-or-user/display-name` identifier.
    """

    text: str
    remote: str
    type: ChatType = ChatType.DIRECT

    @property
    def sender(self) -> str:
        return split_remote(self.remote)[1]

    def reply(self, text: str) -> OutgoingChat:
        """Build a reply of the same kind as this chat."""
        if self.type is ChatType.GROUPCHAT:
            target = split_remote(self.remote)[0]
        else:
            target = self.remote
        return OutgoingChat(text=text, type=self.type, target=target)


@dataclass(frozen=True, slots=True)
class OutgoingChat:
    text: str
    type: ChatType
    target: str


@dataclass(frozen=True, slots=True)
class Message:
    """What handlers and filters see.

    Attributes:
        text: Content with the addressing token and matched pattern removed.
        remote: Raw sender identifier, `room-or-user/display-name`.
    """

    text: str
    remote: str

    @property
    def sender(self) -> str:
        """Display name of the sender, or "" when `remote` has none."""
        return split_remote(self.remote)[1]

    def args(self) -> tuple[str, ...]:
        return split_args(self.text)
