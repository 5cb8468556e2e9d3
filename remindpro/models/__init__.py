from .base import Base
from .channel_state import ChannelState
from .client import Client, ReminderClient
from .event import DeliveryEvent, EventType
from .reminder import Reminder, ReminderChannel, ReminderStatus

__all__ = [
    "Base",
    "ChannelState",
    "Client",
    "ReminderClient",
    "DeliveryEvent",
    "EventType",
    "Reminder",
    "ReminderChannel",
    "ReminderStatus",
]
