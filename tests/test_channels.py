import asyncio
import smtplib

from telegram.error import BadRequest, InvalidToken, NetworkError

from remindpro.channels import ConnectionState
from remindpro.channels.email import SmtpEmailChannel
from remindpro.channels.telegram import TelegramChatChannel, reconnect_delay


class FakeMessage:
    def __init__(self, message_id):
        self.message_id = message_id


class FakeBot:
    def __init__(self, token, init_error=None, send_error=None):
        self.token = token
        self.username = "remind_bot"
        self.init_calls = 0
        self.init_error = init_error
        self.send_error = send_error
        self.sent = []
        self.shut_down = False

    async def initialize(self):
        self.init_calls += 1
        await asyncio.sleep(0)
        if self.init_error is not None:
            raise self.init_error

    async def send_message(self, chat_id, text):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, text))
        return FakeMessage(len(self.sent))

    async def shutdown(self):
        self.shut_down = True


def _factory(init_errors=(), send_error=None):
    """Bot factory; each new bot fails initialize with the next queued error."""
    created = []
    errors = list(init_errors)

    def make(token):
        bot = FakeBot(token, init_error=errors.pop(0) if errors else None, send_error=send_error)
        created.append(bot)
        return bot

    return make, created


def test_no_token_awaits_pairing():
    chat = TelegramChatChannel(None)
    assert chat.status() is ConnectionState.AWAITING_PAIRING

    assert asyncio.run(chat.connect()) is ConnectionState.AWAITING_PAIRING
    result = asyncio.run(chat.send("123", "hello"))
    assert result.success is False


def test_connect_and_send():
    make, created = _factory()
    chat = TelegramChatChannel("123:abc", bot_factory=make)

    async def _run():
        await chat.connect()
        return await chat.send("4242", "Standup in 5 minutes")

    result = asyncio.run(_run())

    assert chat.status() is ConnectionState.CONNECTED
    assert chat.username == "remind_bot"
    assert result.success is True
    assert result.external_id == "1"
    assert created[0].sent == [(4242, "Standup in 5 minutes")]


def test_concurrent_connects_share_one_session():
    make, created = _factory()
    chat = TelegramChatChannel("123:abc", bot_factory=make)

    async def _run():
        return await asyncio.gather(chat.connect(), chat.connect(), chat.connect())

    states = asyncio.run(_run())

    assert states == [ConnectionState.CONNECTED] * 3
    assert len(created) == 1
    assert created[0].init_calls == 1


def test_rejected_token_needs_pairing():
    make, _ = _factory(init_errors=[InvalidToken("Invalid token")])
    chat = TelegramChatChannel("bad", bot_factory=make)

    assert asyncio.run(chat.connect()) is ConnectionState.AWAITING_PAIRING
    assert chat.last_error


def test_network_failure_on_connect_stays_disconnected():
    make, _ = _factory(init_errors=[NetworkError("connection refused")])
    chat = TelegramChatChannel("123:abc", bot_factory=make)

    assert asyncio.run(chat.connect()) is ConnectionState.DISCONNECTED
    assert "connection refused" in chat.last_error


def test_send_network_error_drops_connection():
    make, created = _factory(send_error=NetworkError("connection reset"))
    chat = TelegramChatChannel("123:abc", bot_factory=make)

    async def _run():
        await chat.connect()
        return await chat.send("1", "hi")

    result = asyncio.run(_run())

    assert result.success is False
    assert chat.status() is ConnectionState.DISCONNECTED


def test_send_rejected_by_chat_keeps_connection():
    make, _ = _factory(send_error=BadRequest("Chat not found"))
    chat = TelegramChatChannel("123:abc", bot_factory=make)

    async def _run():
        await chat.connect()
        return await chat.send("1", "hi")

    result = asyncio.run(_run())

    assert result.success is False
    assert "Chat not found" in result.error
    assert chat.status() is ConnectionState.CONNECTED


def test_keep_connected_reconnects():
    make, created = _factory(init_errors=[NetworkError("down"), NetworkError("still down")])
    chat = TelegramChatChannel("123:abc", bot_factory=make)

    async def _run():
        stop = asyncio.Event()
        task = asyncio.create_task(chat.keep_connected(stop, retry_delay=0.001, max_attempts=5))
        for _ in range(200):
            if chat.status() is ConnectionState.CONNECTED:
                break
            await asyncio.sleep(0.005)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(_run())

    assert chat.status() is ConnectionState.CONNECTED
    assert len(created) == 3


def test_keep_connected_gives_up():
    make, created = _factory(init_errors=[NetworkError("down")] * 10)
    chat = TelegramChatChannel("123:abc", bot_factory=make)

    async def _run():
        stop = asyncio.Event()
        await asyncio.wait_for(chat.keep_connected(stop, retry_delay=0.001, max_attempts=2), timeout=1)

    asyncio.run(_run())

    assert chat.status() is ConnectionState.DISCONNECTED
    assert len(created) == 2


def test_disconnect_shuts_bot_down():
    make, created = _factory()
    chat = TelegramChatChannel("123:abc", bot_factory=make)

    async def _run():
        await chat.connect()
        await chat.disconnect()

    asyncio.run(_run())

    assert created[0].shut_down is True
    assert chat.status() is ConnectionState.DISCONNECTED


class FakeSMTP:
    sessions = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.calls = []
        FakeSMTP.sessions.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username))

    def send_message(self, msg):
        self.calls.append(("send", msg["To"], msg["Subject"], msg.get_content().strip()))


class RefusingSMTP(FakeSMTP):
    def send_message(self, msg):
        raise smtplib.SMTPRecipientsRefused({msg["To"]: (550, b"no such user")})


def _email(factory):
    return SmtpEmailChannel(
        "smtp.example.com",
        port=2525,
        username="bot@example.com",
        password="secret",
        from_address="bot@example.com",
        subject="New Reminder",
        smtp_factory=factory,
    )


def test_email_send():
    FakeSMTP.sessions = []
    result = asyncio.run(_email(FakeSMTP).send("ana@example.com", "Dentist at 4pm"))

    assert result.success is True
    assert result.external_id.endswith("@example.com>")
    session = FakeSMTP.sessions[0]
    assert (session.host, session.port) == ("smtp.example.com", 2525)
    assert session.calls == [
        "starttls",
        ("login", "bot@example.com"),
        ("send", "ana@example.com", "New Reminder", "Dentist at 4pm"),
    ]


def test_email_refused_is_a_failed_result():
    result = asyncio.run(_email(RefusingSMTP).send("ghost@example.com", "hi"))

    assert result.success is False
    assert result.error


def test_email_unconfigured():
    channel = SmtpEmailChannel(None, smtp_factory=FakeSMTP)

    assert channel.status() is ConnectionState.DISCONNECTED
    result = asyncio.run(channel.send("ana@example.com", "hi"))
    assert result.success is False
    assert result.error == "email channel is not configured"


def test_listeners_see_every_state_change():
    make, _ = _factory(init_errors=[NetworkError("down")])
    chat = TelegramChatChannel("123:abc", bot_factory=make)
    seen = []
    chat.add_listener(lambda c: seen.append((c.status(), c.last_error)))

    async def _run():
        await chat.connect()
        await chat.connect()

    asyncio.run(_run())

    assert seen == [
        (ConnectionState.CONNECTING, None),
        (ConnectionState.DISCONNECTED, "down"),
        (ConnectionState.CONNECTING, "down"),
        (ConnectionState.CONNECTED, None),
    ]


def test_broken_listener_does_not_break_connect():
    make, _ = _factory()
    chat = TelegramChatChannel("123:abc", bot_factory=make)

    def explode(channel):
        raise RuntimeError("db gone")

    chat.add_listener(explode)

    assert asyncio.run(chat.connect()) is ConnectionState.CONNECTED


def test_reconnect_delay_doubles_up_to_cap():
    assert [reconnect_delay(n, 5.0, 60.0) for n in range(1, 7)] == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0]


def test_keep_connected_backs_off_between_failures(monkeypatch):
    make, _ = _factory(init_errors=[NetworkError("down")] * 10)
    chat = TelegramChatChannel("123:abc", bot_factory=make)
    pauses = []
    real_wait_for = asyncio.wait_for

    async def recording_wait_for(aw, timeout):
        pauses.append(timeout)
        return await real_wait_for(aw, timeout=0.001)

    monkeypatch.setattr(asyncio, "wait_for", recording_wait_for)

    async def _run():
        await chat.keep_connected(asyncio.Event(), retry_delay=5.0, max_delay=12.0, max_attempts=4)

    asyncio.run(_run())

    assert pauses == [5.0, 10.0, 12.0, 12.0]
