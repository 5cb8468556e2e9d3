from __future__ import annotations


class ReminderEngineError(Exception):
    """Base class for delivery engine errors."""


class ClaimConflict(ReminderEngineError):
    """Another poller already moved the reminder out of Pending."""


class PersistenceError(ReminderEngineError):
    """A storage operation failed; the next tick retries the same candidate."""


# Recipient-level failures. The dispatcher folds these into counts.


class RecipientError(ReminderEngineError):
    pass


class RecipientContactMissing(RecipientError):
    def __init__(self, message: str = "no contact for channel") -> None:
        super().__init__(message)


class ChannelUnavailable(RecipientError):
    def __init__(self, message: str = "channel disconnected") -> None:
        super().__init__(message)


class TransientSendError(RecipientError):
    pass


# Raised to the API layer.


class ReminderNotFound(ReminderEngineError):
    def __init__(self, reminder_id: int) -> None:
        super().__init__(f"Reminder {reminder_id} not found")
        self.reminder_id = reminder_id


class ReminderConflict(ReminderEngineError):
    """The reminder is claimed by a poller and cannot be changed right now."""


class RetryNotAllowed(ReminderEngineError):
    pass
