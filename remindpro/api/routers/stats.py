from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from remindpro import crud
from remindpro.api.deps import require_api_key
from remindpro.db import get_db
from remindpro.models.reminder import ReminderStatus
from remindpro.schemas.reminders import StatsOut

router = APIRouter(prefix="/stats", tags=["stats"], dependencies=[Depends(require_api_key)])

_DELIVERED = (ReminderStatus.SENT, ReminderStatus.PARTIALLY_SENT)
_ACTIVE = (ReminderStatus.PENDING, ReminderStatus.PROCESSING)


@router.get("", response_model=StatsOut)
def get_stats(user_id: int | None = Query(default=None), db: Session = Depends(get_db)):
    by_status = crud.count_by_status(db, user_id=user_id)
    return StatsOut(
        total_clients=crud.count_clients(db, user_id=user_id),
        active_reminders=sum(by_status[s.value] for s in _ACTIVE),
        messages_sent=sum(by_status[s.value] for s in _DELIVERED),
        by_status=by_status,
    )
