"""Record store for users, PT/INR tests, medications, reminders, medication logs and push subscriptions.

``Storage`` is the async CRUD contract the scheduler, the push dispatcher and
the HTTP routes depend on. Two implementations ship here:

* ``MemStorage`` keeps everything in process-local dicts keyed by
  auto-incrementing ids.
* ``SqlStorage`` maps the same calls onto SQLAlchemy async sessions, one short
  session per call.

Lookups return ``None`` on a miss; ``update_*`` raise ``NotFoundError``;
``delete_*`` return ``False`` when nothing was deleted. Lists come back in
insertion (id) order, except PT tests, which come back newest test date first.
"""
import itertools
import logging
import os
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

import models
import schemas
from errors import NotFoundError, ValidationError
from utils import env_flag

logger = logging.getLogger(__name__)


class Storage(ABC):
    # Users
    @abstractmethod
    async def get_users(self) -> list[schemas.User]: ...

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[schemas.User]: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[schemas.User]: ...

    @abstractmethod
    async def create_user(self, data: schemas.UserCreate) -> schemas.User: ...

    # PT/INR tests, newest test date first
    @abstractmethod
    async def get_pt_tests(self, user_id: int) -> list[schemas.PtTest]: ...

    @abstractmethod
    async def get_pt_test(self, test_id: int) -> Optional[schemas.PtTest]: ...

    @abstractmethod
    async def create_pt_test(self, user_id: int, data: schemas.PtTestCreate) -> schemas.PtTest: ...

    # Medications
    @abstractmethod
    async def get_medications(self, user_id: int) -> list[schemas.Medication]: ...

    @abstractmethod
    async def get_medication(self, medication_id: int) -> Optional[schemas.Medication]: ...

    @abstractmethod
    async def create_medication(self, user_id: int, data: schemas.MedicationCreate) -> schemas.Medication: ...

    @abstractmethod
    async def update_medication(self, medication_id: int, data: schemas.MedicationUpdate) -> schemas.Medication: ...

    @abstractmethod
    async def delete_medication(self, medication_id: int) -> bool: ...

    # Reminders
    @abstractmethod
    async def get_reminders(self, user_id: int) -> list[schemas.Reminder]: ...

    @abstractmethod
    async def get_reminder(self, reminder_id: int) -> Optional[schemas.Reminder]: ...

    @abstractmethod
    async def create_reminder(self, user_id: int, data: schemas.ReminderCreate) -> schemas.Reminder: ...

    @abstractmethod
    async def update_reminder(self, reminder_id: int, data: schemas.ReminderUpdate) -> schemas.Reminder: ...

    @abstractmethod
    async def delete_reminder(self, reminder_id: int) -> bool: ...

    # Medication logs
    @abstractmethod
    async def get_medication_logs(self, user_id: int) -> list[schemas.MedicationLog]: ...

    @abstractmethod
    async def create_medication_log(self, user_id: int, data: schemas.MedicationLogCreate) -> schemas.MedicationLog: ...

    async def get_medication_logs_by_date(self, user_id: int, day: date) -> list[schemas.MedicationLog]:
        return [log for log in await self.get_medication_logs(user_id) if log.taken_at.date() == day]

    # Push subscriptions
    @abstractmethod
    async def get_push_subscriptions(self, user_id: int) -> list[schemas.PushSubscription]: ...

    @abstractmethod
    async def get_push_subscription(self, subscription_id: int) -> Optional[schemas.PushSubscription]: ...

    @abstractmethod
    async def get_push_subscription_by_endpoint(self, endpoint: str) -> Optional[schemas.PushSubscription]: ...

    @abstractmethod
    async def create_push_subscription(self, user_id: int, data: schemas.PushSubscriptionCreate) -> schemas.PushSubscription: ...

    @abstractmethod
    async def delete_push_subscription(self, subscription_id: int) -> bool: ...


def _merged_reminder(current: schemas.Reminder, data: schemas.ReminderUpdate) -> schemas.Reminder:
    values = current.model_dump()
    values.update(data.model_dump(exclude_unset=True))
    try:
        return schemas.Reminder.model_validate(values)
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e


class MemStorage(Storage):
    def __init__(self):
        self._users: dict[int, schemas.User] = {}
        self._medications: dict[int, schemas.Medication] = {}
        self._pt_tests: dict[int, schemas.PtTest] = {}
        self._reminders: dict[int, schemas.Reminder] = {}
        self._logs: dict[int, schemas.MedicationLog] = {}
        self._subscriptions: dict[int, schemas.PushSubscription] = {}
        self._ids = {
            name: itertools.count(1)
            for name in ("user", "pt_test", "medication", "reminder", "log", "subscription")
        }

    def _next_id(self, kind: str) -> int:
        return next(self._ids[kind])

    async def get_users(self):
        return [u.model_copy() for u in self._users.values()]

    async def get_user(self, user_id):
        u = self._users.get(user_id)
        return u.model_copy() if u else None

    async def get_user_by_username(self, username):
        for u in self._users.values():
            if u.username == username:
                return u.model_copy()
        return None

    async def create_user(self, data):
        if await self.get_user_by_username(data.username):
            raise ValidationError(f"username {data.username!r} already taken")
        user = schemas.User(id=self._next_id("user"), **data.model_dump())
        self._users[user.id] = user
        return user.model_copy()

    async def get_pt_tests(self, user_id):
        tests = [t for t in self._pt_tests.values() if t.user_id == user_id]
        return [t.model_copy() for t in sorted(tests, key=lambda t: (t.test_date, t.id), reverse=True)]

    async def get_pt_test(self, test_id):
        t = self._pt_tests.get(test_id)
        return t.model_copy() if t else None

    async def create_pt_test(self, user_id, data):
        test = schemas.PtTest(
            id=self._next_id("pt_test"), user_id=user_id, created_at=datetime.utcnow(), **data.model_dump()
        )
        self._pt_tests[test.id] = test
        return test.model_copy()

    async def get_medications(self, user_id):
        return [m.model_copy() for m in self._medications.values() if m.user_id == user_id]

    async def get_medication(self, medication_id):
        m = self._medications.get(medication_id)
        return m.model_copy() if m else None

    async def create_medication(self, user_id, data):
        med = schemas.Medication(id=self._next_id("medication"), user_id=user_id, **data.model_dump())
        self._medications[med.id] = med
        return med.model_copy()

    async def update_medication(self, medication_id, data):
        current = self._medications.get(medication_id)
        if current is None:
            raise NotFoundError("Medication", medication_id)
        updated = current.model_copy(update=data.model_dump(exclude_unset=True))
        self._medications[medication_id] = updated
        return updated.model_copy()

    async def delete_medication(self, medication_id):
        return self._medications.pop(medication_id, None) is not None

    async def get_reminders(self, user_id):
        return [r.model_copy() for r in self._reminders.values() if r.user_id == user_id]

    async def get_reminder(self, reminder_id):
        r = self._reminders.get(reminder_id)
        return r.model_copy() if r else None

    async def create_reminder(self, user_id, data):
        rem = schemas.Reminder(id=self._next_id("reminder"), user_id=user_id, **data.model_dump())
        self._reminders[rem.id] = rem
        return rem.model_copy()

    async def update_reminder(self, reminder_id, data):
        current = self._reminders.get(reminder_id)
        if current is None:
            raise NotFoundError("Reminder", reminder_id)
        updated = _merged_reminder(current, data)
        self._reminders[reminder_id] = updated
        return updated.model_copy()

    async def delete_reminder(self, reminder_id):
        return self._reminders.pop(reminder_id, None) is not None

    async def get_medication_logs(self, user_id):
        return [log.model_copy() for log in self._logs.values() if log.user_id == user_id]

    async def create_medication_log(self, user_id, data):
        values = data.model_dump()
        values["taken_at"] = values.get("taken_at") or datetime.now()
        log = schemas.MedicationLog(id=self._next_id("log"), user_id=user_id, **values)
        self._logs[log.id] = log
        return log.model_copy()

    async def get_push_subscriptions(self, user_id):
        return [s.model_copy() for s in self._subscriptions.values() if s.user_id == user_id]

    async def get_push_subscription(self, subscription_id):
        s = self._subscriptions.get(subscription_id)
        return s.model_copy() if s else None

    async def get_push_subscription_by_endpoint(self, endpoint):
        for s in self._subscriptions.values():
            if s.endpoint == endpoint:
                return s.model_copy()
        return None

    async def create_push_subscription(self, user_id, data):
        if await self.get_push_subscription_by_endpoint(data.endpoint):
            raise ValidationError("push endpoint already registered")
        sub = schemas.PushSubscription(
            id=self._next_id("subscription"),
            user_id=user_id,
            created_at=datetime.utcnow(),
            **data.model_dump(),
        )
        self._subscriptions[sub.id] = sub
        return sub.model_copy()

    async def delete_push_subscription(self, subscription_id):
        return self._subscriptions.pop(subscription_id, None) is not None


class SqlStorage(Storage):
    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory

    async def _all(self, stmt, schema):
        async with self._session_factory() as session:
            res = await session.execute(stmt)
            return [schema.model_validate(row) for row in res.scalars().all()]

    async def _one(self, model, record_id, schema):
        async with self._session_factory() as session:
            row = await session.get(model, record_id)
            return schema.model_validate(row) if row else None

    async def _add(self, row, schema):
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValidationError(f"constraint violated: {e.orig}") from e
            await session.refresh(row)
            return schema.model_validate(row)

    async def _delete(self, model, record_id) -> bool:
        async with self._session_factory() as session:
            row = await session.get(model, record_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    async def get_users(self):
        return await self._all(select(models.User).order_by(models.User.id), schemas.User)

    async def get_user(self, user_id):
        return await self._one(models.User, user_id, schemas.User)

    async def get_user_by_username(self, username):
        rows = await self._all(select(models.User).where(models.User.username == username), schemas.User)
        return rows[0] if rows else None

    async def create_user(self, data):
        return await self._add(models.User(**data.model_dump()), schemas.User)

    async def get_pt_tests(self, user_id):
        stmt = (
            select(models.PtTest)
            .where(models.PtTest.user_id == user_id)
            .order_by(models.PtTest.test_date.desc(), models.PtTest.id.desc())
        )
        return await self._all(stmt, schemas.PtTest)

    async def get_pt_test(self, test_id):
        return await self._one(models.PtTest, test_id, schemas.PtTest)

    async def create_pt_test(self, user_id, data):
        return await self._add(models.PtTest(user_id=user_id, **data.model_dump()), schemas.PtTest)

    async def get_medications(self, user_id):
        stmt = select(models.Medication).where(models.Medication.user_id == user_id).order_by(models.Medication.id)
        return await self._all(stmt, schemas.Medication)

    async def get_medication(self, medication_id):
        return await self._one(models.Medication, medication_id, schemas.Medication)

    async def create_medication(self, user_id, data):
        return await self._add(models.Medication(user_id=user_id, **data.model_dump()), schemas.Medication)

    async def update_medication(self, medication_id, data):
        async with self._session_factory() as session:
            row = await session.get(models.Medication, medication_id)
            if row is None:
                raise NotFoundError("Medication", medication_id)
            for fld, value in data.model_dump(exclude_unset=True).items():
                setattr(row, fld, value)
            await session.commit()
            await session.refresh(row)
            return schemas.Medication.model_validate(row)

    async def delete_medication(self, medication_id):
        return await self._delete(models.Medication, medication_id)

    async def get_reminders(self, user_id):
        stmt = select(models.Reminder).where(models.Reminder.user_id == user_id).order_by(models.Reminder.id)
        return await self._all(stmt, schemas.Reminder)

    async def get_reminder(self, reminder_id):
        return await self._one(models.Reminder, reminder_id, schemas.Reminder)

    async def create_reminder(self, user_id, data):
        return await self._add(models.Reminder(user_id=user_id, **data.model_dump()), schemas.Reminder)

    async def update_reminder(self, reminder_id, data):
        async with self._session_factory() as session:
            row = await session.get(models.Reminder, reminder_id)
            if row is None:
                raise NotFoundError("Reminder", reminder_id)
            merged = _merged_reminder(schemas.Reminder.model_validate(row), data)
            for fld in ("medication_id", "time", "days", "active", "notify_before"):
                setattr(row, fld, getattr(merged, fld))
            await session.commit()
            await session.refresh(row)
            return schemas.Reminder.model_validate(row)

    async def delete_reminder(self, reminder_id):
        return await self._delete(models.Reminder, reminder_id)

    async def get_medication_logs(self, user_id):
        stmt = select(models.MedicationLog).where(models.MedicationLog.user_id == user_id).order_by(models.MedicationLog.id)
        return await self._all(stmt, schemas.MedicationLog)

    async def create_medication_log(self, user_id, data):
        values = data.model_dump()
        values["taken_at"] = values.get("taken_at") or datetime.now()
        return await self._add(models.MedicationLog(user_id=user_id, **values), schemas.MedicationLog)

    async def get_push_subscriptions(self, user_id):
        stmt = (
            select(models.PushSubscription)
            .where(models.PushSubscription.user_id == user_id)
            .order_by(models.PushSubscription.id)
        )
        return await self._all(stmt, schemas.PushSubscription)

    async def get_push_subscription(self, subscription_id):
        return await self._one(models.PushSubscription, subscription_id, schemas.PushSubscription)

    async def get_push_subscription_by_endpoint(self, endpoint):
        stmt = select(models.PushSubscription).where(models.PushSubscription.endpoint == endpoint)
        rows = await self._all(stmt, schemas.PushSubscription)
        return rows[0] if rows else None

    async def create_push_subscription(self, user_id, data):
        row = models.PushSubscription(user_id=user_id, **data.model_dump())
        return await self._add(row, schemas.PushSubscription)

    async def delete_push_subscription(self, subscription_id):
        return await self._delete(models.PushSubscription, subscription_id)


SAMPLE_MEDICATIONS = [
    {"name": "Warfarin", "dosage": "5mg", "quantity": "1 tablet", "instructions": "Take in the evening", "time": "20:00"},
    {"name": "Metoprolol", "dosage": "25mg", "quantity": "1 tablet", "instructions": "Take in the morning", "time": "08:00"},
    {"name": "Vitamin D", "dosage": "1000IU", "quantity": "1 tablet", "instructions": "Take with food", "time": "08:00"},
    {"name": "Simvastatin", "dosage": "20mg", "quantity": "1 tablet", "instructions": "Take at bedtime", "time": "20:00"},
]


SAMPLE_PT_TESTS = [
    ("2023-03-02", 2.5, "Regular test"),
    ("2023-03-16", 2.8, "Within range"),
    ("2023-03-30", 3.2, "Slightly above range, doctor advised to adjust dosage"),
    ("2023-04-14", 1.8, "Below range after dose adjustment"),
    ("2023-04-28", 2.1, "After dose increased to 5mg"),
    ("2023-05-12", 2.4, "Regular test"),
]

async def seed_sample_data(storage: Storage) -> Optional[schemas.User]:
    """Create a demo user with PT/INR history, medications and every-day reminders on an empty store."""
    if await storage.get_users():
        return None
    user = await storage.create_user(schemas.UserCreate(username="sarah", name="Sarah Johnson"))
    for test_date, inr_value, notes in SAMPLE_PT_TESTS:
        await storage.create_pt_test(
            user.id, schemas.PtTestCreate(test_date=test_date, inr_value=inr_value, notes=notes)
        )
    for item in SAMPLE_MEDICATIONS:
        med = await storage.create_medication(
            user.id,
            schemas.MedicationCreate(
                name=item["name"], dosage=item["dosage"], quantity=item["quantity"], instructions=item["instructions"]
            ),
        )
        await storage.create_reminder(
            user.id,
            schemas.ReminderCreate(medication_id=med.id, time=item["time"], days="1,2,3,4,5,6,7", notify_before=15),
        )
    logger.info("[Seed] Created sample user %s with %d medications", user.username, len(SAMPLE_MEDICATIONS))
    return user


def build_storage(backend: Optional[str] = None) -> Storage:
    backend = (backend or os.getenv("STORAGE_BACKEND", "sql")).strip().lower()
    if backend == "memory":
        return MemStorage()
    if backend != "sql":
        raise ValueError(f"Unknown STORAGE_BACKEND {backend!r} (expected 'sql' or 'memory')")
    from database import AsyncSessionLocal

    return SqlStorage(AsyncSessionLocal)


def seeding_enabled() -> bool:
    return env_flag("SEED_SAMPLE_DATA")
