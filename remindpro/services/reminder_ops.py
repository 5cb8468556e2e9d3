"""Reminder operations invoked by the API layer.

Every mutation here uses a conditional UPDATE guarded on the current status,
so it cannot race with a poller claim: whichever write lands first wins and
the other observes the new status.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable

from sqlalchemy import and_, delete, update
from sqlalchemy.orm import Session

from remindpro import crud
from remindpro.errors import ReminderConflict, ReminderNotFound, RetryNotAllowed
from remindpro.models.client import ReminderClient
from remindpro.models.event import DeliveryEvent, EventType
from remindpro.models.reminder import RETRYABLE_STATUSES, Reminder, ReminderChannel, ReminderStatus
from remindpro.services.audit import AuditRecorder
from remindpro.services.retry import clamp_max_retries

logger = logging.getLogger("remindpro.reminder_ops")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None, microsecond=0)


def _load(db: Session, reminder_id: int) -> Reminder:
    reminder = crud.get_reminder(db, reminder_id)
    if reminder is None:
        raise ReminderNotFound(reminder_id)
    return reminder


def _reject_if_processing(reminder: Reminder, action: str) -> None:
    if reminder.status is ReminderStatus.PROCESSING:
        raise ReminderConflict(f"Reminder {reminder.id} is being processed; cannot {action} it now")


def create_reminder(
    db: Session,
    user_id: int,
    *,
    message: str,
    channel: ReminderChannel,
    scheduled_at: dt.datetime,
    client_ids: Iterable[int] = (),
    max_retries: int | None = None,
    actor_id: int | None = None,
) -> Reminder:
    reminder = crud.add_reminder(
        db,
        user_id,
        message=message,
        channel=channel,
        scheduled_at=scheduled_at,
        max_retries=clamp_max_retries(max_retries),
        client_ids=client_ids,
    )
    AuditRecorder().record(
        db,
        reminder.id,
        EventType.CREATED,
        f"Reminder scheduled for {scheduled_at.isoformat()} via {channel.value}",
        actor_id=actor_id,
    )
    db.commit()
    db.refresh(reminder)
    return reminder


def reschedule_reminder(
    db: Session,
    reminder_id: int,
    scheduled_at: dt.datetime,
    *,
    actor_id: int | None = None,
) -> Reminder:
    reminder = _load(db, reminder_id)
    _reject_if_processing(reminder, "reschedule")
    if reminder.status is not ReminderStatus.PENDING:
        raise ReminderConflict(f"Reminder {reminder_id} is {reminder.status.value}; only pending reminders can be rescheduled")

    result = db.execute(
        update(Reminder)
        .where(and_(Reminder.id == reminder_id, Reminder.status == ReminderStatus.PENDING))
        .values(scheduled_at=scheduled_at, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ReminderConflict(f"Reminder {reminder_id} changed state while rescheduling")
    AuditRecorder().record(
        db,
        reminder_id,
        EventType.UPDATED,
        f"Rescheduled to {scheduled_at.isoformat()}",
        actor_id=actor_id,
    )
    db.commit()
    db.expire_all()
    return _load(db, reminder_id)


def retry_reminder(
    db: Session,
    reminder_id: int,
    *,
    actor_id: int | None = None,
    now: dt.datetime | None = None,
) -> Reminder:
    """Manual retry: bypasses the retry cap and makes the reminder due now."""
    now = now or _utcnow()
    reminder = _load(db, reminder_id)
    _reject_if_processing(reminder, "retry")
    if reminder.status is ReminderStatus.SENT:
        raise RetryNotAllowed(f"Reminder {reminder_id} was already delivered")
    if reminder.status not in RETRYABLE_STATUSES:
        raise RetryNotAllowed(f"Reminder {reminder_id} is {reminder.status.value}; nothing to retry")

    previous = reminder.status
    result = db.execute(
        update(Reminder)
        .where(and_(Reminder.id == reminder_id, Reminder.status.in_(list(RETRYABLE_STATUSES))))
        .values(
            status=ReminderStatus.PENDING,
            retry_count=0,
            failure_reason=None,
            scheduled_at=now,
            last_retried_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ReminderConflict(f"Reminder {reminder_id} changed state while retrying")
    AuditRecorder().record(
        db,
        reminder_id,
        EventType.RETRIED,
        f"Manual retry requested (was {previous.value})",
        actor_id=actor_id,
        details={"previous_status": previous.value},
        at=now,
    )
    db.commit()
    db.expire_all()
    logger.info("Reminder %s queued for manual retry", reminder_id)
    return _load(db, reminder_id)


def cancel_reminder(db: Session, reminder_id: int, *, actor_id: int | None = None) -> Reminder:
    reminder = _load(db, reminder_id)
    _reject_if_processing(reminder, "cancel")
    if reminder.status is ReminderStatus.CANCELLED:
        return reminder
    if reminder.status is not ReminderStatus.PENDING:
        raise ReminderConflict(f"Reminder {reminder_id} is {reminder.status.value}; only pending reminders can be cancelled")

    now = _utcnow()
    result = db.execute(
        update(Reminder)
        .where(and_(Reminder.id == reminder_id, Reminder.status == ReminderStatus.PENDING))
        .values(status=ReminderStatus.CANCELLED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ReminderConflict(f"Reminder {reminder_id} changed state while cancelling")
    AuditRecorder().record(db, reminder_id, EventType.CANCELLED, "Reminder cancelled", actor_id=actor_id, at=now)
    db.commit()
    db.expire_all()
    logger.info("Reminder %s cancelled", reminder_id)
    return _load(db, reminder_id)


def delete_reminder(db: Session, reminder_id: int) -> None:
    reminder = _load(db, reminder_id)
    _reject_if_processing(reminder, "delete")
    reminder_status = reminder.status
    # the guard keeps a concurrent claim from losing its assignments mid-send
    result = db.execute(
        delete(Reminder)
        .where(and_(Reminder.id == reminder_id, Reminder.status != ReminderStatus.PROCESSING))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ReminderConflict(f"Reminder {reminder_id} is being processed; cannot delete it now")
    db.execute(delete(ReminderClient).where(ReminderClient.reminder_id == reminder_id))
    db.execute(delete(DeliveryEvent).where(DeliveryEvent.reminder_id == reminder_id))
    db.commit()
    logger.info("Reminder %s deleted (was %s)", reminder_id, reminder_status.value)
