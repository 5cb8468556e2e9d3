from __future__ import annotations

import asyncio
import logging
from typing import Callable

from telegram import Bot
from telegram.error import BadRequest, Forbidden, InvalidToken, NetworkError, TelegramError

from remindpro.settings import settings

from .base import ConnectionState, SendResult

logger = logging.getLogger("remindpro.channels.telegram")


def reconnect_delay(attempt: int, base_sec: float, max_sec: float) -> float:
    """Pause after the given failed reconnect attempt: doubles from base, capped."""
    if attempt <= 0:
        return base_sec
    return min(base_sec * 2 ** (attempt - 1), max_sec)


class TelegramChatChannel:
    """Chat channel backed by a Telegram bot.

    Owns its connection state. Only one connect attempt runs at a time;
    callers racing into ``connect()`` wait on the same guard and observe
    its result instead of opening a second session. Listeners registered
    with ``add_listener`` are called on every state change.
    """

    def __init__(self, token: str | None, *, bot_factory=Bot) -> None:
        self._token = token
        self._bot_factory = bot_factory
        self._bot = None
        self._state = ConnectionState.DISCONNECTED if token else ConnectionState.AWAITING_PAIRING
        self._connect_lock = asyncio.Lock()
        self._listeners: list[Callable[["TelegramChatChannel"], None]] = []
        self.username: str | None = None
        self.last_error: str | None = None

    def status(self) -> ConnectionState:
        return self._state

    def add_listener(self, callback: Callable[["TelegramChatChannel"], None]) -> None:
        self._listeners.append(callback)

    def _set_state(self, state: ConnectionState) -> None:
        changed = state is not self._state
        self._state = state
        if changed:
            self.notify()

    def notify(self) -> None:
        for callback in self._listeners:
            try:
                callback(self)
            except Exception:  # noqa: BLE001
                logger.exception("Chat state listener failed")

    async def connect(self) -> ConnectionState:
        if self._state is ConnectionState.CONNECTED:
            return self._state
        async with self._connect_lock:
            if self._state is ConnectionState.CONNECTED:
                return self._state
            if not self._token:
                self._set_state(ConnectionState.AWAITING_PAIRING)
                return self._state

            self._set_state(ConnectionState.CONNECTING)
            try:
                bot = self._bot_factory(token=self._token)
                await bot.initialize()
            except InvalidToken as exc:
                self.last_error = str(exc)
                self._set_state(ConnectionState.AWAITING_PAIRING)
                logger.error("Telegram rejected the bot token: %s", exc)
                return self._state
            except TelegramError as exc:
                self.last_error = str(exc)
                self._set_state(ConnectionState.DISCONNECTED)
                logger.warning("Telegram connect failed: %s", exc)
                return self._state

            self._bot = bot
            self.username = getattr(bot, "username", None)
            self.last_error = None
            self._set_state(ConnectionState.CONNECTED)
            logger.info("Telegram bot connected as @%s", self.username)
            return self._state

    async def disconnect(self) -> None:
        async with self._connect_lock:
            bot, self._bot = self._bot, None
            if self._token:
                self._set_state(ConnectionState.DISCONNECTED)
            if bot is not None:
                try:
                    await bot.shutdown()
                except TelegramError as exc:
                    logger.warning("Telegram shutdown failed: %s", exc)

    async def keep_connected(
        self,
        stop_event: asyncio.Event,
        *,
        retry_delay: float | None = None,
        max_delay: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        delay = settings.CHAT_RECONNECT_DELAY_SEC if retry_delay is None else retry_delay
        cap = settings.CHAT_RECONNECT_MAX_DELAY_SEC if max_delay is None else max_delay
        limit = settings.CHAT_RECONNECT_MAX_ATTEMPTS if max_attempts is None else max_attempts
        attempts = 0
        while not stop_event.is_set():
            pause = delay
            if self._state is ConnectionState.DISCONNECTED:
                if attempts >= limit:
                    logger.error("Telegram reconnect gave up after %s attempts", attempts)
                    return
                attempts += 1
                logger.info("Telegram reconnect attempt %s/%s", attempts, limit)
                if await self.connect() is not ConnectionState.CONNECTED:
                    pause = reconnect_delay(attempts, delay, cap)
            elif self._state is ConnectionState.CONNECTED:
                attempts = 0
            elif self._state is ConnectionState.AWAITING_PAIRING:
                return
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=pause)
            except asyncio.TimeoutError:
                pass

    async def send(self, address: str, text: str) -> SendResult:
        bot = self._bot
        if self._state is not ConnectionState.CONNECTED or bot is None:
            return SendResult(False, error="chat channel not connected")
        try:
            chat_id: int | str = int(address)
        except ValueError:
            chat_id = address
        try:
            message = await bot.send_message(chat_id=chat_id, text=text)
        except (Forbidden, BadRequest) as exc:
            return SendResult(False, error=str(exc))
        except NetworkError as exc:
            # transport broke; let keep_connected() re-establish the session
            self.last_error = str(exc)
            self._set_state(ConnectionState.DISCONNECTED)
            return SendResult(False, error=str(exc))
        except TelegramError as exc:
            return SendResult(False, error=str(exc))
        return SendResult(True, external_id=str(message.message_id))


_chat_channel: TelegramChatChannel | None = None


def get_chat_channel() -> TelegramChatChannel:
    global _chat_channel
    if _chat_channel is None:
        _chat_channel = TelegramChatChannel(settings.TELEGRAM_BOT_TOKEN)
    return _chat_channel


def reset_chat_channel() -> None:
    global _chat_channel
    _chat_channel = None
