import datetime as dt

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from remindpro import crud
from remindpro.channels import ChannelSet, ConnectionState, SendResult
from remindpro.db import get_db
from remindpro.main import create_app
from remindpro.models import Base, ReminderChannel
from remindpro.rate_limit import SendPacer
from remindpro.services import reminder_ops
from remindpro.services.dispatcher import DeliveryDispatcher
from remindpro.services.poller import ReminderPoller
from remindpro.settings import settings


NOW = dt.datetime(2026, 3, 1, 9, 0, 0)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    # tests keep using returned rows after the creating session closes
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


class FakeClock:
    def __init__(self, start: dt.datetime = NOW):
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += dt.timedelta(**kwargs)


class FakeMonotonic:
    """Monotonic clock whose sleep just moves time forward."""

    def __init__(self):
        self.value = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.value

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.value += seconds


class FakeChannel:
    def __init__(self, state: ConnectionState = ConnectionState.CONNECTED):
        self.state = state
        self.sent = []
        self.fail_for = {}
        self.raise_for = {}
        self.fail_all = None

    def status(self) -> ConnectionState:
        return self.state

    async def send(self, address: str, text: str) -> SendResult:
        self.sent.append((address, text))
        if address in self.raise_for:
            raise self.raise_for[address]
        if self.fail_all:
            return SendResult(False, error=self.fail_all)
        if address in self.fail_for:
            return SendResult(False, error=self.fail_for[address])
        return SendResult(True, external_id=f"msg-{len(self.sent)}")


@pytest.fixture()
def session_factory():
    return make_session()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def monotonic():
    return FakeMonotonic()


@pytest.fixture()
def email_channel():
    return FakeChannel()


@pytest.fixture()
def chat_channel():
    return FakeChannel()


@pytest.fixture()
def dispatcher(email_channel, chat_channel, monotonic):
    pacer = SendPacer(1.0, clock=monotonic, sleep=monotonic.sleep)
    return DeliveryDispatcher(ChannelSet(email=email_channel, chat=chat_channel), pacer=pacer, send_timeout_sec=5)


@pytest.fixture()
def poller(dispatcher, session_factory, clock):
    return ReminderPoller(
        dispatcher,
        session_factory=session_factory,
        clock=clock,
        interval_sec=0.01,
        batch_size=10,
        claim_timeout_sec=900,
    )


def add_clients(db, user_id=1, count=2, *, email=True, chat=False):
    clients = []
    for i in range(count):
        clients.append(
            crud.create_client(
                db,
                user_id,
                name=f"Client {i + 1}",
                email=f"client{i + 1}@example.com" if email else None,
                phone=f"+1555000{i + 1:04d}",
                telegram_chat_id=str(1000 + i) if chat else None,
            )
        )
    return clients


def add_reminder(db, clients, *, channel=ReminderChannel.EMAIL, scheduled_at=None, max_retries=3, user_id=1):
    return reminder_ops.create_reminder(
        db,
        user_id,
        message="Your appointment is tomorrow at 10:00",
        channel=channel,
        scheduled_at=scheduled_at or NOW - dt.timedelta(minutes=1),
        client_ids=[c.id for c in clients],
        max_retries=max_retries,
    )


@pytest.fixture()
def test_app():
    SessionLocal = make_session()
    app = create_app()

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return app, SessionLocal


@pytest.fixture()
def client(test_app, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "test-key")
    monkeypatch.setattr(settings, "EMBEDDED_WORKER", False)
    app, _ = test_app
    return TestClient(app)


@pytest.fixture()
def api_headers():
    return {"X-API-Key": "test-key"}
