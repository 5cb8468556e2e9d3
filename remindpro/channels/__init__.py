from __future__ import annotations

from dataclasses import dataclass

from remindpro.models.reminder import ReminderChannel

from .base import ChatChannel, ConnectionState, EmailChannel, SendResult


@dataclass
class ChannelSet:
    email: EmailChannel | None = None
    chat: ChatChannel | None = None

    def for_channel(self, channel: ReminderChannel):
        if channel is ReminderChannel.EMAIL:
            return self.email
        if channel is ReminderChannel.CHAT:
            return self.chat
        return None


__all__ = [
    "ChannelSet",
    "ChatChannel",
    "ConnectionState",
    "EmailChannel",
    "SendResult",
]
