from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from remindpro.models.event import DeliveryEvent, EventType


def new_correlation_id() -> str:
    return str(uuid.uuid4())


class AuditRecorder:
    """Appends delivery events to the caller's transaction.

    One recorder instance is bound to one correlation id, i.e. one
    processing pass or one API operation. It never commits.
    """

    def __init__(self, correlation_id: str | None = None) -> None:
        self.correlation_id = correlation_id or new_correlation_id()

    def record(
        self,
        db: Session,
        reminder_id: int,
        event_type: EventType,
        message: str,
        *,
        actor_id: int | None = None,
        details: dict | None = None,
        at: dt.datetime | None = None,
    ) -> DeliveryEvent:
        event = DeliveryEvent(
            reminder_id=reminder_id,
            event_type=event_type,
            message=message,
            correlation_id=self.correlation_id,
            actor_id=actor_id,
            details=details,
        )
        if at is not None:
            event.created_at = at
        db.add(event)
        return event


def list_events(db: Session, reminder_id: int, *, correlation_id: str | None = None) -> list[DeliveryEvent]:
    stmt = (
        select(DeliveryEvent)
        .where(DeliveryEvent.reminder_id == reminder_id)
        .order_by(DeliveryEvent.id.asc())
    )
    if correlation_id:
        stmt = stmt.where(DeliveryEvent.correlation_id == correlation_id)
    return list(db.execute(stmt).scalars())
