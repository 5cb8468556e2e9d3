from __future__ import annotations

import datetime as dt
import enum

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class EventType(str, enum.Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    SENT = "Sent"
    FAILED = "Failed"
    RETRIED = "Retried"
    CANCELLED = "Cancelled"


class DeliveryEvent(Base):
    """Append-only audit record; rows are never updated after insert."""

    __tablename__ = "delivery_events"
    __table_args__ = (
        Index("ix_delivery_events_reminder_created", "reminder_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reminder_id: Mapped[int] = mapped_column(ForeignKey("reminders.id", ondelete="CASCADE"))
    event_type: Mapped[EventType] = mapped_column(
        Enum(EventType, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e])
    )
    message: Mapped[str] = mapped_column(Text)
    correlation_id: Mapped[str] = mapped_column(String(36), index=True)
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=lambda: dt.datetime.utcnow())

    reminder = relationship("Reminder", back_populates="events")
