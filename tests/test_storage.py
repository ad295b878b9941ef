from datetime import date, datetime

import pytest

import schemas
from conftest import make_user_with_reminder, run
from errors import NotFoundError, ValidationError
from storage import MemStorage, SAMPLE_MEDICATIONS, SAMPLE_PT_TESTS, build_storage, seed_sample_data


def test_build_storage_memory():
    assert isinstance(build_storage("memory"), MemStorage)


def test_build_storage_rejects_unknown_backend():
    with pytest.raises(ValueError):
        build_storage("redis")


def test_medication_crud(storage):
    async def scenario():
        user = await storage.create_user(schemas.UserCreate(username="sarah"))
        med = await storage.create_medication(user.id, schemas.MedicationCreate(name="Warfarin", dosage="5mg"))
        updated = await storage.update_medication(med.id, schemas.MedicationUpdate(dosage="7.5mg"))
        listed = await storage.get_medications(user.id)
        deleted = await storage.delete_medication(med.id)
        return updated, listed, deleted, await storage.get_medication(med.id)

    updated, listed, deleted, after = run(scenario())
    assert updated.dosage == "7.5mg"
    assert updated.name == "Warfarin"
    assert [m.id for m in listed] == [updated.id]
    assert deleted is True
    assert after is None


def test_lists_come_back_in_insertion_order(storage):
    async def scenario():
        user, med, _ = await make_user_with_reminder(storage)
        for t in ("08:00", "12:00", "06:00"):
            await storage.create_reminder(user.id, schemas.ReminderCreate(medication_id=med.id, time=t, days="daily"))
        return await storage.get_reminders(user.id)

    assert [r.time for r in run(scenario())] == ["20:00", "08:00", "12:00", "06:00"]


def test_returned_records_are_copies(storage):
    async def scenario():
        _, _, rem = await make_user_with_reminder(storage)
        rem.time = "01:00"
        return await storage.get_reminder(rem.id)

    assert run(scenario()).time == "20:00"


def test_update_reminder_validates_merged_record(storage):
    _, _, rem = run(make_user_with_reminder(storage))
    with pytest.raises(ValidationError):
        run(storage.update_reminder(rem.id, schemas.ReminderUpdate(time="25:99")))
    updated = run(storage.update_reminder(rem.id, schemas.ReminderUpdate(active=False, notify_before=5)))
    assert updated.active is False
    assert updated.notify_before == 5
    assert updated.time == "20:00"


def test_update_unknown_records_raise(storage):
    with pytest.raises(NotFoundError):
        run(storage.update_reminder(99, schemas.ReminderUpdate(active=False)))
    with pytest.raises(NotFoundError):
        run(storage.update_medication(99, schemas.MedicationUpdate(name="x")))


def test_delete_missing_returns_false(storage):
    assert run(storage.delete_reminder(5)) is False
    assert run(storage.delete_push_subscription(5)) is False


def test_duplicate_username_rejected(storage):
    run(storage.create_user(schemas.UserCreate(username="sarah")))
    with pytest.raises(ValidationError):
        run(storage.create_user(schemas.UserCreate(username="sarah")))


def test_duplicate_endpoint_rejected(storage):
    data = schemas.PushSubscriptionCreate(endpoint="https://push.example.com/x", p256dh="p", auth="a")
    run(storage.create_push_subscription(1, data))
    with pytest.raises(ValidationError):
        run(storage.create_push_subscription(2, data))


def test_medication_logs_by_date(storage):
    async def scenario():
        user, _, rem = await make_user_with_reminder(storage)
        await storage.create_medication_log(
            user.id, schemas.MedicationLogCreate(reminder_id=rem.id, scheduled="20:00", taken_at=datetime(2026, 10, 18, 20, 3))
        )
        await storage.create_medication_log(
            user.id, schemas.MedicationLogCreate(reminder_id=rem.id, scheduled="20:00", taken_at=datetime(2026, 10, 19, 20, 1))
        )
        return await storage.get_medication_logs_by_date(user.id, date(2026, 10, 19))

    logs = run(scenario())
    assert len(logs) == 1
    assert logs[0].taken_at.day == 19


def test_log_defaults_taken_at_to_now(storage):
    log = run(storage.create_medication_log(1, schemas.MedicationLogCreate(reminder_id=1, scheduled="08:00")))
    assert log.taken is True
    assert (datetime.now() - log.taken_at).total_seconds() < 60


def test_seed_sample_data_only_on_empty_store(storage):
    user = run(seed_sample_data(storage))
    assert user.username == "sarah"
    assert run(seed_sample_data(storage)) is None
    meds = run(storage.get_medications(user.id))
    reminders = run(storage.get_reminders(user.id))
    assert [m.name for m in meds] == [m["name"] for m in SAMPLE_MEDICATIONS]
    assert len(reminders) == len(SAMPLE_MEDICATIONS)
    assert all(r.days == "1,2,3,4,5,6,7" and r.notify_before == 15 for r in reminders)
    tests = run(storage.get_pt_tests(user.id))
    assert len(tests) == len(SAMPLE_PT_TESTS)
    assert tests[0].test_date == date(2023, 5, 12)


def test_sql_storage_round_trip(sql_storage):
    async def scenario():
        user, med, rem = await make_user_with_reminder(sql_storage)
        sub = await sql_storage.create_push_subscription(
            user.id, schemas.PushSubscriptionCreate(endpoint="https://push.example.com/x", p256dh="p", auth="a")
        )
        updated = await sql_storage.update_reminder(rem.id, schemas.ReminderUpdate(days="monday,friday"))
        by_endpoint = await sql_storage.get_push_subscription_by_endpoint(sub.endpoint)
        users = await sql_storage.get_users()
        return user, updated, by_endpoint, users

    user, updated, by_endpoint, users = run(scenario())
    assert [u.username for u in users] == ["sarah"]
    assert updated.days == "monday,friday"
    assert updated.time == "20:00"
    assert by_endpoint.user_id == user.id


def test_sql_storage_constraint_violation_maps_to_validation_error(sql_storage):
    run(sql_storage.create_user(schemas.UserCreate(username="sarah")))
    with pytest.raises(ValidationError):
        run(sql_storage.create_user(schemas.UserCreate(username="sarah")))


def test_sql_storage_missing_records(sql_storage):
    assert run(sql_storage.get_reminder(1)) is None
    assert run(sql_storage.delete_medication(1)) is False
    with pytest.raises(NotFoundError):
        run(sql_storage.update_reminder(1, schemas.ReminderUpdate(active=False)))


@pytest.fixture(params=["memory", "sql"])
def any_storage(request):
    if request.param == "sql":
        return request.getfixturevalue("sql_storage")
    return MemStorage()


def test_pt_tests_newest_first(any_storage):
    async def scenario():
        user = await any_storage.create_user(schemas.UserCreate(username="sarah"))
        other = await any_storage.create_user(schemas.UserCreate(username="tom"))
        for day, inr in (("2023-03-02", 2.5), ("2023-05-12", 2.4), ("2023-03-30", 3.2)):
            await any_storage.create_pt_test(user.id, schemas.PtTestCreate(test_date=day, inr_value=inr))
        await any_storage.create_pt_test(other.id, schemas.PtTestCreate(test_date="2023-06-01", inr_value=1.9))
        return await any_storage.get_pt_tests(user.id)

    tests = run(scenario())
    assert [t.test_date for t in tests] == [date(2023, 5, 12), date(2023, 3, 30), date(2023, 3, 2)]
    assert [t.inr_value for t in tests] == [2.4, 3.2, 2.5]


def test_get_pt_test(any_storage):
    created = run(any_storage.create_pt_test(
        1, schemas.PtTestCreate(test_date="2023-03-16", inr_value=2.8, notes="Within range")
    ))
    fetched = run(any_storage.get_pt_test(created.id))
    assert fetched.notes == "Within range"
    assert fetched.created_at is not None
    assert run(any_storage.get_pt_test(created.id + 1)) is None


def test_update_can_clear_optional_fields(any_storage):
    async def scenario():
        user = await any_storage.create_user(schemas.UserCreate(username="sarah"))
        med = await any_storage.create_medication(
            user.id, schemas.MedicationCreate(name="Warfarin", dosage="5mg", instructions="Take in the evening")
        )
        return await any_storage.update_medication(med.id, schemas.MedicationUpdate(instructions=None))

    updated = run(scenario())
    assert updated.instructions is None
    assert updated.name == "Warfarin"


def test_update_rejects_null_required_fields(any_storage):
    _, _, rem = run(make_user_with_reminder(any_storage))
    with pytest.raises(ValidationError):
        run(any_storage.update_reminder(rem.id, schemas.ReminderUpdate(time=None)))
    assert run(any_storage.get_reminder(rem.id)).time == "20:00"
