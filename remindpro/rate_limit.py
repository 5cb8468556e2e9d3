from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from remindpro.settings import settings


Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class SendPacer:
    """Keeps a fixed minimum gap between consecutive outbound sends.

    Providers throttle or flag accounts that burst messages, so sends are
    spaced out rather than fired back to back. Clock and sleep are injectable
    so tests can advance time without waiting.
    """

    def __init__(
        self,
        delay_sec: float | None = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.delay_sec = settings.SEND_DELAY_SEC if delay_sec is None else delay_sec
        self._clock = clock
        self._sleep = sleep
        self._last_send_at: float | None = None

    def reset(self) -> None:
        self._last_send_at = None

    def mark_sent(self) -> None:
        """Record that a send just finished, successful or not."""
        self._last_send_at = self._clock()

    async def wait(self) -> float:
        """Block until delay_sec has passed since the last finished send; returns seconds waited."""
        if self._last_send_at is None or self.delay_sec <= 0:
            return 0.0
        remaining = self.delay_sec - (self._clock() - self._last_send_at)
        if remaining <= 0:
            return 0.0
        await self._sleep(remaining)
        return remaining
