# tests/conftest.py
import itertools
import os
from datetime import datetime, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from qsmart import auth, crud
from qsmart.api.deps import get_notifier
from qsmart.database import Base, get_db
from qsmart.ledger import QueueLedger, QueueLocks
from qsmart.main import app
from qsmart.models import Queue, Role, ServiceType
from qsmart.notifier import EventNotifier

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start=datetime(2026, 1, 5, 8, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


class FakeTransport:
    def __init__(self):
        self.sent = []

    async def send_to_user(self, user_id, event, payload):
        self.sent.append(("user", user_id, event, payload))

    async def send_to_queue(self, queue_id, event, payload):
        self.sent.append(("queue", queue_id, event, payload))

    async def send_to_queue_managers(self, queue_id, event, payload):
        self.sent.append(("managers", queue_id, event, payload))


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(role=Role.student, name=None, **kwargs):
        n = next(counter)
        return crud.create_user(
            db,
            name=name or f"{role.value.title()} {n}",
            email=f"{role.value}{n}@school.test",
            password="secret123",
            role=role,
            **kwargs,
        )

    return _make


@pytest.fixture
def teacher(make_user):
    return make_user(Role.teacher, name="Ms. Frizzle")


@pytest.fixture
def student(make_user):
    return make_user(Role.student)


@pytest.fixture
def service_type(db):
    service_type = ServiceType(name="Office hours")
    db.add(service_type)
    db.commit()
    db.refresh(service_type)
    return service_type


@pytest.fixture
def make_queue(db, teacher, service_type):
    def _make(admin=None, **kwargs):
        values = dict(
            name="Math help",
            location="Room 101",
            service_type_id=service_type.id,
            admin_id=(admin or teacher).id,
            average_wait_time=10,
            max_queue_length=50,
            auto_call_next=False,
        )
        values.update(kwargs)
        queue = Queue(**values)
        db.add(queue)
        db.commit()
        db.refresh(queue)
        return queue

    return _make


@pytest.fixture
def queue(make_queue):
    return make_queue()


@pytest.fixture
def events():
    return []


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(db, events, clock):
    return QueueLedger(db, publish=events.append, clock=clock, locks=QueueLocks())


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(db, transport):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: EventNotifier(transport)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def live_client(db):
    """Client wired to the real WebSocket connection manager."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def auth_headers(user):
    return {"Authorization": f"Bearer {auth.create_access_token(user)}"}
