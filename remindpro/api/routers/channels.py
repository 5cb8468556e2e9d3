from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from remindpro import crud
from remindpro.api.deps import require_api_key
from remindpro.channels import ConnectionState
from remindpro.channels.telegram import TelegramChatChannel, get_chat_channel
from remindpro.db import get_db
from remindpro.schemas.reminders import ChannelStatusOut
from remindpro.services.channel_state import CHAT

router = APIRouter(prefix="/channels", tags=["channels"], dependencies=[Depends(require_api_key)])

# Mounted only when the worker runs inside the API process; otherwise the
# API's chat client is not the one that sends.
embedded_router = APIRouter(prefix="/channels", tags=["channels"], dependencies=[Depends(require_api_key)])


@router.get("/chat/status", response_model=ChannelStatusOut)
def chat_status(db: Session = Depends(get_db)):
    row = crud.get_channel_state(db, CHAT)
    if row is None:
        return ChannelStatusOut(
            channel=CHAT,
            status=ConnectionState.DISCONNECTED.value,
            last_error="worker has not reported chat state yet",
        )
    return ChannelStatusOut(
        channel=CHAT,
        status=row.status,
        account=row.account,
        last_error=row.last_error,
        updated_at=row.updated_at,
    )


@embedded_router.post("/chat/connect", response_model=ChannelStatusOut)
async def chat_connect(chat: TelegramChatChannel = Depends(get_chat_channel)):
    await chat.connect()
    return ChannelStatusOut(
        channel=CHAT,
        status=chat.status().value,
        account=chat.username,
        last_error=chat.last_error,
    )
