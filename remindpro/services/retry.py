from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

from remindpro.settings import settings


MAX_RETRIES_CAP = 10


@dataclass(frozen=True)
class RetryDecision:
    retry_count: int
    exhausted: bool
    next_attempt_at: dt.datetime | None = None


def clamp_max_retries(value: int | None) -> int:
    if value is None:
        value = settings.DEFAULT_MAX_RETRIES
    return max(0, min(int(value), MAX_RETRIES_CAP))


def backoff_delay(retry_count: int, base_sec: int | None = None) -> dt.timedelta:
    base = settings.RETRY_BACKOFF_BASE_SEC if base_sec is None else base_sec
    if base <= 0 or retry_count <= 0:
        return dt.timedelta(0)
    return dt.timedelta(seconds=base * 2 ** (retry_count - 1))


def next_attempt(retry_count: int, max_retries: int, now: dt.datetime) -> RetryDecision:
    """Account one failed automatic attempt.

    The attempt is the last one when ``retry_count + 1 >= max_retries``.
    The stored count never goes past ``max_retries``.
    """
    attempted = retry_count + 1
    if attempted >= max_retries:
        return RetryDecision(retry_count=min(attempted, max(max_retries, 0)), exhausted=True)
    delay = backoff_delay(attempted)
    return RetryDecision(
        retry_count=attempted,
        exhausted=False,
        next_attempt_at=now + delay if delay else None,
    )
