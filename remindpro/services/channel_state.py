from __future__ import annotations

import datetime as dt
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from remindpro import crud
from remindpro.channels.telegram import TelegramChatChannel
from remindpro.db import SessionLocal, session_scope

logger = logging.getLogger("remindpro.channel_state")

CHAT = "chat"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None, microsecond=0)


class ChatStatePublisher:
    """Writes the worker's chat connection state to the database.

    The API usually runs in another process, so it serves this row instead
    of asking its own (never connected) chat client.
    """

    def __init__(self, session_factory=None, *, clock: Callable[[], dt.datetime] = _utcnow) -> None:
        self.session_factory = session_factory or SessionLocal
        self.clock = clock

    def __call__(self, chat: TelegramChatChannel) -> None:
        try:
            with session_scope(self.session_factory) as db:
                crud.save_channel_state(
                    db,
                    CHAT,
                    status=chat.status().value,
                    account=chat.username,
                    last_error=chat.last_error,
                    now=self.clock(),
                )
        except SQLAlchemyError as exc:
            logger.error("Could not publish chat state %s: %s", chat.status().value, exc)
