import asyncio

from remindpro.channels import ChannelSet, ConnectionState, SendResult
from remindpro.crud import RecipientContact
from remindpro.models import ReminderChannel
from remindpro.rate_limit import SendPacer
from remindpro.services.dispatcher import DeliveryDispatcher, ReminderSnapshot

from conftest import FakeChannel


def _snapshot(channel=ReminderChannel.EMAIL):
    return ReminderSnapshot(id=7, channel=channel, message="Invoice due Friday", retry_count=0, max_retries=3)


def _contacts(count=3, *, chat=False):
    return [
        RecipientContact(
            id=i + 1,
            name=f"Client {i + 1}",
            email=f"client{i + 1}@example.com",
            phone=None,
            telegram_chat_id=str(500 + i) if chat else None,
        )
        for i in range(count)
    ]


def test_sends_in_recipient_order_with_pacing(dispatcher, email_channel, monotonic):
    report = asyncio.run(dispatcher.dispatch(_snapshot(), _contacts(3)))

    assert report.success_count == 3
    assert report.total == 3
    assert [a for a, _ in email_channel.sent] == [
        "client1@example.com",
        "client2@example.com",
        "client3@example.com",
    ]
    assert {t for _, t in email_channel.sent} == {"Invoice due Friday"}
    assert monotonic.sleeps == [1.0, 1.0]
    assert [r.external_id for r in report.results] == ["msg-1", "msg-2", "msg-3"]


def test_missing_contact_is_not_attempted(dispatcher, email_channel):
    contacts = _contacts(2)
    contacts[0] = RecipientContact(id=1, name="No Mail", email="  ", phone="+15550000")

    report = asyncio.run(dispatcher.dispatch(_snapshot(), contacts))

    assert report.success_count == 1
    assert report.total == 2
    assert report.results[0].attempted is False
    assert report.results[0].error == "no contact for channel"
    assert [a for a, _ in email_channel.sent] == ["client2@example.com"]


def test_one_recipient_raising_does_not_stop_the_rest(dispatcher, email_channel):
    email_channel.raise_for["client2@example.com"] = RuntimeError("boom")

    report = asyncio.run(dispatcher.dispatch(_snapshot(), _contacts(3)))

    assert report.success_count == 2
    assert report.total == 3
    assert report.last_error == "boom"
    assert [r.success for r in report.results] == [True, False, True]


def test_last_error_is_the_latest_failure(dispatcher, email_channel):
    email_channel.fail_for["client1@example.com"] = "first"
    email_channel.fail_for["client3@example.com"] = "third"

    report = asyncio.run(dispatcher.dispatch(_snapshot(), _contacts(3)))

    assert report.success_count == 1
    assert report.last_error == "third"


def test_chat_channel_disconnected_skips_all(dispatcher, chat_channel):
    chat_channel.state = ConnectionState.AWAITING_PAIRING

    report = asyncio.run(dispatcher.dispatch(_snapshot(ReminderChannel.CHAT), _contacts(2, chat=True)))

    assert chat_channel.sent == []
    assert report.success_count == 0
    assert report.attempted_count == 0
    assert report.last_error == "channel disconnected"


class DroppingChannel(FakeChannel):
    """Loses its connection right after the first message goes out."""

    async def send(self, address, text):
        result = await super().send(address, text)
        self.state = ConnectionState.DISCONNECTED
        return result


def test_chat_disconnect_mid_pass_fails_remaining(monotonic):
    chat = DroppingChannel()
    dispatcher = DeliveryDispatcher(
        ChannelSet(chat=chat), pacer=SendPacer(0, clock=monotonic, sleep=monotonic.sleep), send_timeout_sec=5
    )

    report = asyncio.run(dispatcher.dispatch(_snapshot(ReminderChannel.CHAT), _contacts(3, chat=True)))

    assert [a for a, _ in chat.sent] == ["500"]
    assert [r.success for r in report.results] == [True, False, False]
    assert report.results[2].error == "channel disconnected"


def test_unconfigured_channel(monotonic):
    dispatcher = DeliveryDispatcher(ChannelSet(), pacer=SendPacer(0, clock=monotonic, sleep=monotonic.sleep))

    report = asyncio.run(dispatcher.dispatch(_snapshot(), _contacts(1)))

    assert report.success_count == 0
    assert report.last_error == "email channel is not configured"


class SlowChannel(FakeChannel):
    async def send(self, address, text):
        await asyncio.sleep(5)
        return SendResult(True)


def test_send_timeout_counts_as_failure(monotonic):
    dispatcher = DeliveryDispatcher(
        ChannelSet(email=SlowChannel()),
        pacer=SendPacer(0, clock=monotonic, sleep=monotonic.sleep),
        send_timeout_sec=0.01,
    )

    report = asyncio.run(dispatcher.dispatch(_snapshot(), _contacts(1)))

    assert report.success_count == 0
    assert report.results[0].attempted is True
    assert report.last_error == "send timed out after 0.01s"


class SlowSmtpChannel(FakeChannel):
    """Each send takes two seconds on the monotonic clock."""

    def __init__(self, clock):
        super().__init__()
        self.clock = clock

    async def send(self, address, text):
        self.clock.value += 2.0
        return await super().send(address, text)


def test_full_delay_after_each_slow_send(monotonic):
    email = SlowSmtpChannel(monotonic)
    dispatcher = DeliveryDispatcher(
        ChannelSet(email=email), pacer=SendPacer(1.0, clock=monotonic, sleep=monotonic.sleep), send_timeout_sec=5
    )

    report = asyncio.run(dispatcher.dispatch(_snapshot(), _contacts(3)))

    assert report.success_count == 3
    assert monotonic.sleeps == [1.0, 1.0]


def test_failed_send_still_paces_the_next_one(dispatcher, email_channel, monotonic):
    email_channel.fail_for["client1@example.com"] = "421 try again later"

    asyncio.run(dispatcher.dispatch(_snapshot(), _contacts(2)))

    assert monotonic.sleeps == [1.0]


def test_chat_goes_to_chat_id_not_phone(dispatcher, chat_channel):
    recipients = [
        RecipientContact(id=1, name="Phone only", email=None, phone="+15550100"),
        RecipientContact(id=2, name="Paired", email=None, phone="+15550101", telegram_chat_id="777"),
    ]

    report = asyncio.run(dispatcher.dispatch(_snapshot(ReminderChannel.CHAT), recipients))

    assert [a for a, _ in chat_channel.sent] == ["777"]
    assert [r.success for r in report.results] == [False, True]
    assert report.attempted_count == 1
