"""Decides whether an inbound chat is meant for the bot."""

from __future__ import annotations

from .types import ChatType, IncomingChat, Message


def _title(nick: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in nick.split(" "))


class AddressingPolicy:
    def __init__(self, *, nick: str, full_name: str, direct_messages: bool) -> None:
        self.nick = nick
        self.full_name = full_name
        self.direct_messages = direct_messages

    def sent_by_me(self, chat: IncomingChat) -> bool:
        return chat.sender == self.full_name

    def should_handle(self, chat: IncomingChat) -> bool:
        if not chat.text:
            return False
        # the server echoes our own room messages back to us
        if self.sent_by_me(chat):
            return False
        if chat.type is ChatType.ERROR:
            return False
        if chat.type is ChatType.GROUPCHAT:
            return chat.text.lower().startswith(self.nick.lower())
        return self.direct_messages

    def strip(self, chat: IncomingChat) -> Message:
        """Remove the addressing token from group chats.

        Clients often capitalize names, so the nick with each word title-cased is
        tried before the exact one. Direct chats carry no token.
        """
        if chat.type is not ChatType.GROUPCHAT:
            return Message(text=chat.text, remote=chat.remote)
        text = chat.text.removeprefix(_title(self.nick))
        text = text.removeprefix(self.nick).strip()
        return Message(text=text, remote=chat.remote)
