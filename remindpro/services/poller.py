from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from remindpro import crud
from remindpro.db import SessionLocal, session_scope
from remindpro.errors import ClaimConflict, PersistenceError, ReminderNotFound
from remindpro.services.aggregator import Outcome, aggregate, failed_attempt
from remindpro.services.audit import AuditRecorder
from remindpro.services.dispatcher import DeliveryDispatcher, ReminderSnapshot
from remindpro.settings import settings

logger = logging.getLogger("remindpro.poller")


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None, microsecond=0)


class ReminderPoller:
    def __init__(
        self,
        dispatcher: DeliveryDispatcher,
        *,
        session_factory=None,
        clock: Callable[[], dt.datetime] = utcnow,
        interval_sec: float | None = None,
        batch_size: int | None = None,
        claim_timeout_sec: int | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.session_factory = session_factory or SessionLocal
        self.clock = clock
        self.interval_sec = settings.POLL_INTERVAL_SEC if interval_sec is None else interval_sec
        self.batch_size = settings.POLL_BATCH_SIZE if batch_size is None else batch_size
        self.claim_timeout_sec = settings.CLAIM_TIMEOUT_SEC if claim_timeout_sec is None else claim_timeout_sec
        self._stop = asyncio.Event()
        self.ticks = 0

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def run_forever(self) -> None:
        logger.info("Reminder poller started (interval=%ss, batch=%s)", self.interval_sec, self.batch_size)
        while not self._stop.is_set():
            try:
                processed = await self.run_once()
                self.ticks += 1
                if settings.HEARTBEAT_EVERY_TICKS and self.ticks % settings.HEARTBEAT_EVERY_TICKS == 0:
                    logger.info("Reminder poller heartbeat (ticks=%s, processed=%s)", self.ticks, processed)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Reminder poller tick failed: %s", exc)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_sec)
            except asyncio.TimeoutError:
                pass
        logger.info("Reminder poller stopped")

    async def run_once(self) -> int:
        now = self.clock()
        self.recover_stale_claims(now)
        try:
            with session_scope(self.session_factory) as db:
                candidate_ids = [r.id for r in crud.list_due_reminders(db, now, limit=self.batch_size)]
        except SQLAlchemyError as exc:
            logger.error("Could not load due reminders: %s", exc)
            return 0

        processed = 0
        for reminder_id in candidate_ids:
            audit = AuditRecorder()
            try:
                self._claim(reminder_id, audit.correlation_id)
            except ClaimConflict:
                logger.debug("Reminder %s already claimed, skipping", reminder_id)
                continue
            except PersistenceError as exc:
                logger.error("Reminder %s: claim failed: %s", reminder_id, exc)
                continue
            await self.process_claimed(reminder_id, audit)
            processed += 1
        return processed

    def _claim(self, reminder_id: int, lock_id: str) -> None:
        try:
            with session_scope(self.session_factory) as db:
                claimed = crud.claim_reminder(db, reminder_id, lock_id, self.clock())
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc
        if not claimed:
            raise ClaimConflict(f"Reminder {reminder_id} is no longer pending")

    async def process_claimed(self, reminder_id: int, audit: AuditRecorder) -> Outcome | None:
        snapshot: ReminderSnapshot | None = None
        outcome: Outcome | None = None
        try:
            with session_scope(self.session_factory) as db:
                reminder = crud.get_reminder(db, reminder_id)
                if reminder is None:
                    raise ReminderNotFound(reminder_id)
                snapshot = ReminderSnapshot(
                    id=reminder.id,
                    channel=reminder.channel,
                    message=reminder.message,
                    retry_count=reminder.retry_count,
                    max_retries=reminder.max_retries,
                )
                recipients = crud.resolve_recipients(db, reminder_id)
            logger.info(
                "Processing reminder %s (%s, %s recipients, correlation=%s)",
                reminder_id,
                snapshot.channel.value,
                len(recipients),
                audit.correlation_id,
            )
            report = await self.dispatcher.dispatch(snapshot, recipients)
            outcome = aggregate(report, snapshot.retry_count, snapshot.max_retries, self.clock())
        except asyncio.CancelledError:
            outcome = self._outcome_for_error(reminder_id, snapshot, RuntimeError("processing cancelled"))
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Reminder %s: processing failed", reminder_id)
            outcome = self._outcome_for_error(reminder_id, snapshot, exc)
        finally:
            if outcome is not None:
                self._finalize(reminder_id, audit, outcome)
        return outcome

    def _outcome_for_error(self, reminder_id: int, snapshot: ReminderSnapshot | None, exc: Exception) -> Outcome | None:
        if snapshot is not None:
            retry_count, max_retries = snapshot.retry_count, snapshot.max_retries
        else:
            try:
                with session_scope(self.session_factory) as db:
                    reminder = crud.get_reminder(db, reminder_id)
                    if reminder is None:
                        return None
                    retry_count, max_retries = reminder.retry_count, reminder.max_retries
            except SQLAlchemyError:
                logger.exception("Reminder %s: could not reload after failure", reminder_id)
                return None
        return failed_attempt(str(exc) or exc.__class__.__name__, retry_count, max_retries, self.clock())

    def _finalize(self, reminder_id: int, audit: AuditRecorder, outcome: Outcome) -> bool:
        now = self.clock()
        try:
            with session_scope(self.session_factory) as db:
                released = crud.apply_outcome(db, reminder_id, audit.correlation_id, outcome, now)
                if not released:
                    db.rollback()
                    logger.warning("Reminder %s: claim lost before finalization", reminder_id)
                    return False
                audit.record(
                    db,
                    reminder_id,
                    outcome.event_type,
                    outcome.event_message,
                    details=outcome.details or None,
                    at=now,
                )
                db.commit()
        except SQLAlchemyError:
            logger.exception("Reminder %s: could not persist outcome %s", reminder_id, outcome.status.value)
            return False
        logger.info(
            "Processed reminder %s. Status: %s, RetryCount: %s",
            reminder_id,
            outcome.status.value,
            outcome.retry_count,
        )
        return True

    def recover_stale_claims(self, now: dt.datetime) -> int:
        """Release claims left behind by a worker that died mid-pass."""
        if self.claim_timeout_sec <= 0:
            return 0
        cutoff = now - dt.timedelta(seconds=self.claim_timeout_sec)
        try:
            with session_scope(self.session_factory) as db:
                stale = [
                    (r.id, r.lock_id, r.retry_count, r.max_retries)
                    for r in crud.list_stale_claims(db, cutoff, limit=self.batch_size)
                ]
        except SQLAlchemyError as exc:
            logger.error("Could not load stale claims: %s", exc)
            return 0

        released = 0
        for reminder_id, lock_id, retry_count, max_retries in stale:
            outcome = failed_attempt("claim expired", retry_count, max_retries, now)
            audit = AuditRecorder(lock_id)
            if self._finalize(reminder_id, audit, outcome):
                logger.warning("Reminder %s: expired claim released (%s)", reminder_id, outcome.status.value)
                released += 1
        return released
