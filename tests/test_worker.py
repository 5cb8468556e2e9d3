import asyncio

from remindpro import crud
from remindpro.channels.telegram import TelegramChatChannel
from remindpro.models import Reminder, ReminderStatus
from remindpro.worker import serve

from conftest import add_clients, add_reminder


def test_serve_runs_poller_until_stopped(poller, session_factory, email_channel):
    with session_factory() as db:
        reminder = add_reminder(db, add_clients(db, count=1))

    chat = TelegramChatChannel(None)

    async def _run():
        stop = asyncio.Event()
        task = asyncio.create_task(serve(stop, chat=chat, poller=poller))
        for _ in range(100):
            if email_channel.sent:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=2)

    asyncio.run(_run())

    assert poller.stopped
    with session_factory() as db:
        assert db.get(Reminder, reminder.id).status is ReminderStatus.SENT
        state = crud.get_channel_state(db, "chat")
        assert state.status == "AwaitingPairing"
