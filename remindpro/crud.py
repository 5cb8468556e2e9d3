from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from remindpro.models.channel_state import ChannelState
from remindpro.models.client import Client, ReminderClient
from remindpro.models.reminder import Reminder, ReminderChannel, ReminderStatus
from remindpro.services.aggregator import Outcome


@dataclass(frozen=True)
class RecipientContact:
    """What the dispatcher knows about one recipient.

    The chat channel is Telegram, which addresses users by chat id rather
    than phone number, so chat reminders go to ``telegram_chat_id``. ``phone``
    is carried for display only.
    """

    id: int
    name: str
    email: str | None
    phone: str | None
    telegram_chat_id: str | None = None

    def address_for(self, channel: ReminderChannel) -> str | None:
        if channel is ReminderChannel.EMAIL:
            value = self.email
        elif channel is ReminderChannel.CHAT:
            value = self.telegram_chat_id
        else:
            value = None
        value = (value or "").strip()
        return value or None


# Clients


def create_client(
    db: Session,
    user_id: int,
    *,
    name: str,
    email: str | None = None,
    phone: str | None = None,
    telegram_chat_id: str | None = None,
) -> Client:
    client = Client(
        user_id=user_id,
        name=name.strip(),
        email=email,
        phone=phone,
        telegram_chat_id=telegram_chat_id,
    )
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


def count_clients(db: Session, user_id: int | None = None) -> int:
    stmt = select(func.count()).select_from(Client)
    if user_id is not None:
        stmt = stmt.where(Client.user_id == user_id)
    return int(db.execute(stmt).scalar_one())


# Reminders


def add_reminder(
    db: Session,
    user_id: int,
    *,
    message: str,
    channel: ReminderChannel,
    scheduled_at: dt.datetime,
    max_retries: int,
    client_ids: Iterable[int] = (),
) -> Reminder:
    reminder = Reminder(
        user_id=user_id,
        message=message,
        channel=channel,
        scheduled_at=scheduled_at,
        max_retries=max_retries,
        status=ReminderStatus.PENDING,
        retry_count=0,
    )
    db.add(reminder)
    db.flush()
    assign_clients(db, reminder, client_ids)
    return reminder


def assign_clients(db: Session, reminder: Reminder, client_ids: Iterable[int]) -> list[int]:
    wanted = list(dict.fromkeys(int(c) for c in client_ids))
    if not wanted:
        return []
    found = set(
        db.execute(
            select(Client.id).where(and_(Client.id.in_(wanted), Client.user_id == reminder.user_id))
        ).scalars()
    )
    existing = set(
        db.execute(select(ReminderClient.client_id).where(ReminderClient.reminder_id == reminder.id)).scalars()
    )
    added = []
    for client_id in wanted:
        if client_id in found and client_id not in existing:
            db.add(ReminderClient(reminder_id=reminder.id, client_id=client_id))
            added.append(client_id)
    return added


def get_reminder(db: Session, reminder_id: int) -> Reminder | None:
    return db.get(Reminder, reminder_id)


def list_reminders(
    db: Session,
    user_id: int | None = None,
    status: ReminderStatus | None = None,
    limit: int = 100,
) -> list[Reminder]:
    stmt = select(Reminder).order_by(Reminder.scheduled_at.asc(), Reminder.id.asc()).limit(limit)
    if user_id is not None:
        stmt = stmt.where(Reminder.user_id == user_id)
    if status is not None:
        stmt = stmt.where(Reminder.status == status)
    return list(db.execute(stmt).scalars())


def count_by_status(db: Session, user_id: int | None = None) -> dict[str, int]:
    stmt = select(Reminder.status, func.count()).group_by(Reminder.status)
    if user_id is not None:
        stmt = stmt.where(Reminder.user_id == user_id)
    counts = {status.value: 0 for status in ReminderStatus}
    for status, count in db.execute(stmt).all():
        counts[status.value] = int(count)
    return counts


def resolve_recipients(db: Session, reminder_id: int) -> list[RecipientContact]:
    rows = db.execute(
        select(Client)
        .join(ReminderClient, ReminderClient.client_id == Client.id)
        .where(ReminderClient.reminder_id == reminder_id)
        .order_by(ReminderClient.id.asc())
    ).scalars()
    return [
        RecipientContact(
            id=c.id,
            name=c.name,
            email=c.email,
            phone=c.phone,
            telegram_chat_id=c.telegram_chat_id,
        )
        for c in rows
    ]


# Scheduler


def list_due_reminders(db: Session, now: dt.datetime, limit: int = 50) -> list[Reminder]:
    return list(
        db.execute(
            select(Reminder)
            .where(
                and_(
                    Reminder.status == ReminderStatus.PENDING,
                    Reminder.scheduled_at <= now,
                )
            )
            .order_by(Reminder.scheduled_at.asc(), Reminder.id.asc())
            .limit(limit)
        ).scalars()
    )


def claim_reminder(db: Session, reminder_id: int, lock_id: str, now: dt.datetime) -> bool:
    """Pending -> Processing, only if nobody else got there first. Commits."""
    result = db.execute(
        update(Reminder)
        .where(and_(Reminder.id == reminder_id, Reminder.status == ReminderStatus.PENDING))
        .values(status=ReminderStatus.PROCESSING, locked_at=now, lock_id=lock_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def apply_outcome(db: Session, reminder_id: int, lock_id: str, outcome: Outcome, now: dt.datetime) -> bool:
    """Write the outcome and release the claim held by ``lock_id``.

    Does not commit, so the caller can add the audit event to the same
    transaction. Returns False when the claim is no longer ours.
    """
    values = {
        "status": outcome.status,
        "retry_count": outcome.retry_count,
        "failure_reason": outcome.failure_reason,
        "locked_at": None,
        "lock_id": None,
        "processed_at": now,
        "updated_at": now,
    }
    if outcome.delivered:
        values["sent_at"] = now
    if outcome.scheduled_at is not None:
        values["scheduled_at"] = outcome.scheduled_at
    result = db.execute(
        update(Reminder)
        .where(
            and_(
                Reminder.id == reminder_id,
                Reminder.status == ReminderStatus.PROCESSING,
                Reminder.lock_id == lock_id,
            )
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def list_stale_claims(db: Session, older_than: dt.datetime, limit: int = 50) -> list[Reminder]:
    return list(
        db.execute(
            select(Reminder)
            .where(
                and_(
                    Reminder.status == ReminderStatus.PROCESSING,
                    Reminder.locked_at.is_not(None),
                    Reminder.locked_at < older_than,
                )
            )
            .order_by(Reminder.locked_at.asc())
            .limit(limit)
        ).scalars()
    )


# Channel state


def save_channel_state(
    db: Session,
    channel: str,
    *,
    status: str,
    account: str | None,
    last_error: str | None,
    now: dt.datetime,
) -> ChannelState:
    row = db.get(ChannelState, channel)
    if row is None:
        row = ChannelState(channel=channel)
        db.add(row)
    row.status = status
    row.account = account
    row.last_error = last_error[:1000] if last_error else None
    row.updated_at = now
    db.commit()
    return row


def get_channel_state(db: Session, channel: str) -> ChannelState | None:
    return db.get(ChannelState, channel)
