from __future__ import annotations

import asyncio
import logging
import signal

from remindpro.channels import ChannelSet
from remindpro.channels.email import SmtpEmailChannel
from remindpro.channels.telegram import TelegramChatChannel, get_chat_channel
from remindpro.logging_utils import configure_logging
from remindpro.rate_limit import SendPacer
from remindpro.services.channel_state import ChatStatePublisher
from remindpro.services.dispatcher import DeliveryDispatcher
from remindpro.services.poller import ReminderPoller
from remindpro.settings import settings

logger = logging.getLogger("remindpro.worker")


def build_poller(channels: ChannelSet | None = None, **kwargs) -> ReminderPoller:
    if channels is None:
        channels = ChannelSet(email=SmtpEmailChannel.from_settings(), chat=get_chat_channel())
    dispatcher = DeliveryDispatcher(channels, pacer=SendPacer(settings.SEND_DELAY_SEC))
    return ReminderPoller(dispatcher, **kwargs)


async def serve(
    stop_event: asyncio.Event,
    *,
    chat: TelegramChatChannel | None = None,
    poller: ReminderPoller | None = None,
) -> None:
    chat = chat or get_chat_channel()
    poller = poller or build_poller(ChannelSet(email=SmtpEmailChannel.from_settings(), chat=chat))

    chat.add_listener(ChatStatePublisher(poller.session_factory))
    await chat.connect()
    # publish even when connect left the state unchanged (e.g. no token)
    chat.notify()
    logger.info("Reminder worker started (chat=%s)", chat.status().value)

    keepalive = asyncio.create_task(chat.keep_connected(stop_event))
    polling = asyncio.create_task(poller.run_forever())
    try:
        await stop_event.wait()
    finally:
        poller.stop()
        await polling
        keepalive.cancel()
        try:
            await keepalive
        except asyncio.CancelledError:
            pass
        await chat.disconnect()
        logger.info("Reminder worker stopped")


async def run_loop() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # no loop signal handlers on Windows; KeyboardInterrupt still applies
            pass
    await serve(stop_event)


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(run_loop())


if __name__ == "__main__":
    main()
