from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    AWAITING_PAIRING = "AwaitingPairing"
    CONNECTED = "Connected"


@dataclass(frozen=True)
class SendResult:
    success: bool
    external_id: str | None = None
    error: str | None = None


@runtime_checkable
class EmailChannel(Protocol):
    async def send(self, address: str, text: str) -> SendResult: ...


@runtime_checkable
class ChatChannel(Protocol):
    def status(self) -> ConnectionState: ...

    async def send(self, address: str, text: str) -> SendResult: ...
