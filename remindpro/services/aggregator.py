from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field

from remindpro.models.event import EventType
from remindpro.models.reminder import ReminderStatus
from remindpro.services.retry import next_attempt


# matches the width of reminders.failure_reason
FAILURE_REASON_MAX_LEN = 1000


def _clip(reason: str) -> str:
    if len(reason) <= FAILURE_REASON_MAX_LEN:
        return reason
    return reason[: FAILURE_REASON_MAX_LEN - 3] + "..."


@dataclass(frozen=True)
class RecipientResult:
    client_id: int
    success: bool
    error: str | None = None
    external_id: str | None = None
    attempted: bool = True


@dataclass
class DispatchReport:
    success_count: int = 0
    total: int = 0
    last_error: str | None = None
    results: list[RecipientResult] = field(default_factory=list)

    def add(self, result: RecipientResult) -> None:
        self.results.append(result)
        self.total += 1
        if result.success:
            self.success_count += 1
        elif result.error:
            self.last_error = result.error

    @property
    def attempted_count(self) -> int:
        return sum(1 for r in self.results if r.attempted)


@dataclass(frozen=True)
class Outcome:
    status: ReminderStatus
    retry_count: int
    failure_reason: str | None
    event_type: EventType
    event_message: str
    delivered: bool = False
    scheduled_at: dt.datetime | None = None
    details: dict = field(default_factory=dict)


def aggregate(report: DispatchReport, retry_count: int, max_retries: int, now: dt.datetime) -> Outcome:
    success, total = report.success_count, report.total
    details = {"success": success, "total": total, "attempted": report.attempted_count}

    if total == 0:
        reason = "No clients associated"
        return Outcome(
            status=ReminderStatus.PERMANENTLY_FAILED,
            retry_count=retry_count,
            failure_reason=reason,
            event_type=EventType.FAILED,
            event_message=reason,
            details=details,
        )

    if success == total:
        return Outcome(
            status=ReminderStatus.SENT,
            retry_count=retry_count,
            failure_reason=None,
            event_type=EventType.SENT,
            event_message="Successfully delivered to all clients",
            delivered=True,
            details=details,
        )

    if success > 0:
        reason = _clip(f"Delivered to {success}/{total} clients. Last error: {report.last_error}")
        return Outcome(
            status=ReminderStatus.PARTIALLY_SENT,
            retry_count=retry_count,
            failure_reason=reason,
            event_type=EventType.SENT,
            event_message=f"Delivered to {success}/{total} clients",
            delivered=True,
            details=details,
        )

    return failed_attempt(report.last_error, retry_count, max_retries, now, details=details)


def failed_attempt(
    last_error: str | None,
    retry_count: int,
    max_retries: int,
    now: dt.datetime,
    *,
    details: dict | None = None,
) -> Outcome:
    """Zero-success branch: consume one retry, then either reschedule or give up."""
    decision = next_attempt(retry_count, max_retries, now)
    details = dict(details or {})
    details["attempt"] = retry_count + 1
    if decision.exhausted:
        reason = _clip(f"Permanently failed after {retry_count + 1} attempts. Last error: {last_error}")
        status = ReminderStatus.PERMANENTLY_FAILED
    else:
        reason = _clip(f"Attempt {decision.retry_count} failed: {last_error}. Retrying later...")
        status = ReminderStatus.PENDING
    return Outcome(
        status=status,
        retry_count=decision.retry_count,
        failure_reason=reason,
        event_type=EventType.FAILED,
        event_message=reason,
        scheduled_at=decision.next_attempt_at,
        details=details,
    )
