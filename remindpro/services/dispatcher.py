from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from remindpro.channels import ChannelSet, ConnectionState
from remindpro.crud import RecipientContact
from remindpro.errors import (
    ChannelUnavailable,
    RecipientContactMissing,
    RecipientError,
    TransientSendError,
)
from remindpro.models.reminder import ReminderChannel
from remindpro.rate_limit import SendPacer
from remindpro.services.aggregator import DispatchReport, RecipientResult
from remindpro.settings import settings

logger = logging.getLogger("remindpro.dispatcher")


@dataclass(frozen=True)
class ReminderSnapshot:
    id: int
    channel: ReminderChannel
    message: str
    retry_count: int
    max_retries: int


class DeliveryDispatcher:
    def __init__(
        self,
        channels: ChannelSet,
        *,
        pacer: SendPacer | None = None,
        send_timeout_sec: float | None = None,
    ) -> None:
        self.channels = channels
        self.pacer = pacer or SendPacer()
        self.send_timeout_sec = settings.SEND_TIMEOUT_SEC if send_timeout_sec is None else send_timeout_sec

    async def dispatch(self, reminder: ReminderSnapshot, recipients: Sequence[RecipientContact]) -> DispatchReport:
        report = DispatchReport()
        client = self.channels.for_channel(reminder.channel)
        channel_down = False

        for recipient in recipients:
            try:
                address = recipient.address_for(reminder.channel)
                if not address:
                    raise RecipientContactMissing()
                if client is None:
                    raise ChannelUnavailable(f"{reminder.channel.value} channel is not configured")
                if reminder.channel is ReminderChannel.CHAT:
                    # once the chat client is seen down, the rest of the pass is not attempted
                    if not channel_down and client.status() is not ConnectionState.CONNECTED:
                        channel_down = True
                    if channel_down:
                        raise ChannelUnavailable()
                await self.pacer.wait()
                try:
                    external_id = await self._send(client, address, reminder.message)
                finally:
                    self.pacer.mark_sent()
            except RecipientError as exc:
                attempted = isinstance(exc, TransientSendError)
                logger.warning(
                    "Reminder %s: client %s not delivered: %s", reminder.id, recipient.id, exc
                )
                report.add(RecipientResult(recipient.id, False, error=str(exc), attempted=attempted))
            except Exception as exc:  # noqa: BLE001
                logger.exception("Reminder %s: unexpected error sending to client %s", reminder.id, recipient.id)
                report.add(RecipientResult(recipient.id, False, error=str(exc) or exc.__class__.__name__))
            else:
                logger.info("Reminder %s: delivered to client %s via %s", reminder.id, recipient.id, reminder.channel.value)
                report.add(RecipientResult(recipient.id, True, external_id=external_id))

        return report

    async def _send(self, client, address: str, text: str) -> str | None:
        try:
            result = await asyncio.wait_for(client.send(address, text), timeout=self.send_timeout_sec)
        except asyncio.TimeoutError:
            raise TransientSendError(f"send timed out after {self.send_timeout_sec:g}s") from None
        if not result.success:
            raise TransientSendError(result.error or "send failed")
        return result.external_id
