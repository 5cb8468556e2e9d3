from __future__ import annotations

import datetime as dt
import enum

from sqlalchemy import CheckConstraint, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from remindpro.settings import settings

from .base import Base


class ReminderStatus(str, enum.Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SENT = "Sent"
    PARTIALLY_SENT = "PartiallySent"
    PERMANENTLY_FAILED = "PermanentlyFailed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        ReminderStatus.SENT,
        ReminderStatus.PARTIALLY_SENT,
        ReminderStatus.PERMANENTLY_FAILED,
        ReminderStatus.CANCELLED,
    }
)

RETRYABLE_STATUSES = frozenset({ReminderStatus.PARTIALLY_SENT, ReminderStatus.PERMANENTLY_FAILED})


class ReminderChannel(str, enum.Enum):
    EMAIL = "email"
    CHAT = "chat"


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Reminder(Base):
    __tablename__ = "reminders"
    __table_args__ = (
        Index("ix_reminders_status_scheduled_at", "status", "scheduled_at"),
        CheckConstraint("retry_count >= 0 AND retry_count <= max_retries", name="ck_reminders_retry_bounds"),
        CheckConstraint("max_retries >= 0 AND max_retries <= 10", name="ck_reminders_max_retries"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)

    message: Mapped[str] = mapped_column(Text)
    channel: Mapped[ReminderChannel] = mapped_column(
        Enum(ReminderChannel, native_enum=False, length=16, values_callable=_enum_values),
        default=ReminderChannel.EMAIL,
    )
    scheduled_at: Mapped[dt.datetime] = mapped_column(DateTime)

    # status is the only eligibility/terminality flag
    status: Mapped[ReminderStatus] = mapped_column(
        Enum(ReminderStatus, native_enum=False, length=32, values_callable=_enum_values),
        default=ReminderStatus.PENDING,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=lambda: settings.DEFAULT_MAX_RETRIES)
    failure_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Claim lock, held only while status is Processing
    locked_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    lock_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    sent_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    processed_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    last_retried_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=lambda: dt.datetime.utcnow())
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime,
        default=lambda: dt.datetime.utcnow(),
        onupdate=lambda: dt.datetime.utcnow(),
    )

    assignments = relationship(
        "ReminderClient",
        back_populates="reminder",
        cascade="all, delete-orphan",
        order_by="ReminderClient.id",
    )
    events = relationship(
        "DeliveryEvent",
        back_populates="reminder",
        cascade="all, delete-orphan",
        order_by="DeliveryEvent.id",
    )

    def __repr__(self) -> str:
        return f"<Reminder(id={self.id}, status='{self.status.value}', retry={self.retry_count}/{self.max_retries})>"
