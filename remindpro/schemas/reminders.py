from __future__ import annotations

import datetime as dt
from pydantic import BaseModel, Field, field_validator

from remindpro.models.event import EventType
from remindpro.models.reminder import ReminderChannel, ReminderStatus


def _to_naive_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is not None:
        value = value.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return value


class ReminderCreate(BaseModel):
    user_id: int = Field(ge=1)
    message: str = Field(min_length=1, max_length=4000)
    channel: ReminderChannel = ReminderChannel.EMAIL
    scheduled_at: dt.datetime
    client_ids: list[int] = Field(default_factory=list, max_length=500)
    max_retries: int | None = Field(default=None, ge=0, le=10)

    @field_validator("message")
    @classmethod
    def _message(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("message must not be empty")
        return v

    @field_validator("scheduled_at")
    @classmethod
    def _scheduled_at(cls, v: dt.datetime) -> dt.datetime:
        return _to_naive_utc(v)


class ReminderReschedule(BaseModel):
    scheduled_at: dt.datetime

    @field_validator("scheduled_at")
    @classmethod
    def _scheduled_at(cls, v: dt.datetime) -> dt.datetime:
        return _to_naive_utc(v)


class ReminderOut(BaseModel):
    id: int
    user_id: int
    message: str
    channel: ReminderChannel
    scheduled_at: dt.datetime
    status: ReminderStatus
    retry_count: int
    max_retries: int
    failure_reason: str | None
    sent_at: dt.datetime | None
    processed_at: dt.datetime | None
    last_retried_at: dt.datetime | None
    created_at: dt.datetime

    class Config:
        from_attributes = True


class DeliveryEventOut(BaseModel):
    id: int
    reminder_id: int
    event_type: EventType
    message: str
    correlation_id: str
    actor_id: int | None
    details: dict | None
    created_at: dt.datetime

    class Config:
        from_attributes = True


class StatsOut(BaseModel):
    total_clients: int
    active_reminders: int
    messages_sent: int
    by_status: dict[str, int]


class ChannelStatusOut(BaseModel):
    channel: str
    status: str
    account: str | None = None
    last_error: str | None = None
    updated_at: dt.datetime | None = None
