import asyncio
import os

# Must be set before main/deps are imported by any test module
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("SCHEDULER_ENABLED", "0")

import pytest
import requests
from pywebpush import WebPushException
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import schemas
from database import Base
from push_service import PushService, load_vapid_config
from storage import MemStorage, SqlStorage


def run(coro):
    return asyncio.run(coro)


def push_error(status: int) -> WebPushException:
    resp = requests.Response()
    resp.status_code = status
    return WebPushException(f"Push failed: {status}", response=resp)


class FakeTransport:
    """Stands in for pywebpush; outcome per endpoint is an exception to raise or None for success."""

    def __init__(self):
        self.calls = []
        self.outcomes = {}

    def __call__(self, info, data, vapid_private_key, vapid_claims, timeout):
        self.calls.append({"info": info, "data": data, "claims": vapid_claims, "timeout": timeout})
        outcome = self.outcomes.get(info["endpoint"])
        if outcome is not None:
            raise outcome
        return None


class RecordingPush:
    """Replaces PushService in scheduler tests."""

    def __init__(self):
        self.calls = []

    async def send_to_user(self, user_id, payload):
        self.calls.append((user_id, payload))
        return {"sent": 1, "failed": 0}


@pytest.fixture(scope="session")
def vapid():
    return load_vapid_config()


@pytest.fixture
def storage():
    return MemStorage()


@pytest.fixture
def sql_storage(tmp_path):
    # every run() call gets a new event loop, so no pooled connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{(tmp_path / 'test.db').as_posix()}", poolclass=NullPool)

    async def create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    run(create())
    yield SqlStorage(async_sessionmaker(bind=engine, expire_on_commit=False))
    run(engine.dispose())


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def push_service(storage, vapid, transport):
    return PushService(storage, vapid, transport=transport, timeout=2.0)


def subscription_body(endpoint: str) -> dict:
    return {"endpoint": endpoint, "keys": {"p256dh": "BPkey-" + endpoint[-4:], "auth": "auth-" + endpoint[-4:]}}


async def make_user_with_reminder(storage, *, username="sarah", name="Warfarin", dosage="5mg",
                                  time="20:00", days="1,2,3,4,5,6,7", notify_before=15, active=True):
    user = await storage.create_user(schemas.UserCreate(username=username))
    med = await storage.create_medication(user.id, schemas.MedicationCreate(name=name, dosage=dosage))
    rem = await storage.create_reminder(
        user.id,
        schemas.ReminderCreate(medication_id=med.id, time=time, days=days, notify_before=notify_before, active=active),
    )
    return user, med, rem
