from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from remindpro import crud
from remindpro.api.deps import get_actor_id, require_api_key
from remindpro.db import get_db
from remindpro.errors import ReminderConflict, ReminderNotFound, RetryNotAllowed
from remindpro.models.reminder import ReminderStatus
from remindpro.schemas.reminders import (
    DeliveryEventOut,
    ReminderCreate,
    ReminderOut,
    ReminderReschedule,
)
from remindpro.services import reminder_ops
from remindpro.services.audit import list_events

router = APIRouter(prefix="/reminders", tags=["reminders"], dependencies=[Depends(require_api_key)])


def _raise_http(exc: Exception):
    if isinstance(exc, ReminderNotFound):
        raise HTTPException(status_code=404, detail="Reminder not found")
    if isinstance(exc, (ReminderConflict, RetryNotAllowed)):
        raise HTTPException(status_code=409, detail=str(exc))
    raise exc


@router.post("", response_model=ReminderOut, status_code=201)
def create_reminder(payload: ReminderCreate, db: Session = Depends(get_db), actor_id=Depends(get_actor_id)):
    return reminder_ops.create_reminder(
        db,
        payload.user_id,
        message=payload.message,
        channel=payload.channel,
        scheduled_at=payload.scheduled_at,
        client_ids=payload.client_ids,
        max_retries=payload.max_retries,
        actor_id=actor_id,
    )


@router.get("", response_model=list[ReminderOut])
def list_reminders(
    user_id: int | None = Query(default=None),
    status: ReminderStatus | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return crud.list_reminders(db, user_id=user_id, status=status, limit=limit)


@router.get("/{reminder_id}", response_model=ReminderOut)
def get_reminder(reminder_id: int, db: Session = Depends(get_db)):
    reminder = crud.get_reminder(db, reminder_id)
    if not reminder:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder


@router.patch("/{reminder_id}", response_model=ReminderOut)
def reschedule_reminder(
    reminder_id: int,
    payload: ReminderReschedule,
    db: Session = Depends(get_db),
    actor_id=Depends(get_actor_id),
):
    try:
        return reminder_ops.reschedule_reminder(db, reminder_id, payload.scheduled_at, actor_id=actor_id)
    except (ReminderNotFound, ReminderConflict) as exc:
        _raise_http(exc)


@router.delete("/{reminder_id}")
def delete_reminder(reminder_id: int, db: Session = Depends(get_db)):
    try:
        reminder_ops.delete_reminder(db, reminder_id)
    except (ReminderNotFound, ReminderConflict) as exc:
        _raise_http(exc)
    return {"ok": True}


@router.post("/{reminder_id}/retry", response_model=ReminderOut)
def retry_reminder(reminder_id: int, db: Session = Depends(get_db), actor_id=Depends(get_actor_id)):
    try:
        return reminder_ops.retry_reminder(db, reminder_id, actor_id=actor_id)
    except (ReminderNotFound, ReminderConflict, RetryNotAllowed) as exc:
        _raise_http(exc)


@router.post("/{reminder_id}/cancel", response_model=ReminderOut)
def cancel_reminder(reminder_id: int, db: Session = Depends(get_db), actor_id=Depends(get_actor_id)):
    try:
        return reminder_ops.cancel_reminder(db, reminder_id, actor_id=actor_id)
    except (ReminderNotFound, ReminderConflict) as exc:
        _raise_http(exc)


@router.get("/{reminder_id}/events", response_model=list[DeliveryEventOut])
def reminder_events(
    reminder_id: int,
    correlation_id: str | None = Query(default=None, max_length=36),
    db: Session = Depends(get_db),
):
    if not crud.get_reminder(db, reminder_id):
        raise HTTPException(status_code=404, detail="Reminder not found")
    return list_events(db, reminder_id, correlation_id=correlation_id)
