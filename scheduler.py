"""Periodic sweep that turns due medication reminders into push notifications.

Every ``interval_seconds`` the sweep reads all users and their reminders from
the record store and compares each active reminder against the host's local
clock. A reminder is due while the current minute sits inside its lead-time
window: ``0 <= minutes(time) - minutes(now) <= notify_before``. Nothing is
remembered between sweeps, so a reminder fires on every sweep inside its
window. Pass ``should_dispatch`` to layer stricter semantics on top.
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

import schemas
from errors import NotFoundError
from push_service import PushService
from schemas import EVERY_DAY, WEEKDAY_NAMES, parse_days, parse_hhmm
from storage import Storage
from utils import env_flag, env_int

logger = logging.getLogger(__name__)

CHECK_INTERVAL_SECONDS = env_int("REMINDER_CHECK_INTERVAL_SEC", 60, minimum=5)
SWEEP_JOB_ID = "reminder_sweep"
REMINDER_URL = "/reminders"
REMINDER_ACTIONS = [
    {"action": "taken", "title": "Mark as Taken"},
    {"action": "snooze", "title": "Snooze"},
]

DispatchHook = Callable[[schemas.Reminder, datetime], Awaitable[bool]]


def minutes_since_midnight(hhmm: str) -> int:
    hour, minute = parse_hhmm(hhmm)
    return hour * 60 + minute


def weekday_name(now: datetime) -> str:
    return WEEKDAY_NAMES[now.weekday()]


def is_scheduled_today(reminder: schemas.Reminder, now: datetime) -> bool:
    days = parse_days(reminder.days)
    return EVERY_DAY in days or weekday_name(now) in days


def is_due(reminder: schemas.Reminder, now: datetime) -> bool:
    """True when ``now`` falls in the reminder's lead-time window today (both ends inclusive)."""
    if not reminder.active or not is_scheduled_today(reminder, now):
        return False
    delta = minutes_since_midnight(reminder.time) - (now.hour * 60 + now.minute)
    return 0 <= delta <= (reminder.notify_before or 0)


def reminder_payload(reminder: schemas.Reminder, medication: schemas.Medication) -> schemas.NotificationPayload:
    return schemas.NotificationPayload(
        title=f"Time for {medication.name}",
        body=f"It's time to take {medication.dosage} of {medication.name}",
        tag=f"reminder-{reminder.id}",
        url=REMINDER_URL,
        actions=REMINDER_ACTIONS,
        # Keys the service worker reads for its "taken" action
        data={"reminderId": reminder.id, "medicationId": medication.id},
    )


class ReminderScheduler:
    def __init__(
        self,
        storage: Storage,
        push_service: PushService,
        interval_seconds: Optional[int] = None,
        should_dispatch: Optional[DispatchHook] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.push_service = push_service
        self.interval_seconds = interval_seconds or CHECK_INTERVAL_SECONDS
        self._should_dispatch = should_dispatch
        self._clock = clock
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._sweep_lock = asyncio.Lock()
        # In-memory instrumentation for the health endpoint (non-persistent)
        self.last_run: Optional[datetime] = None
        self.last_counts: dict[str, int] = {}

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        """Sweep now, then every ``interval_seconds``. Calling again while running does nothing.

        Needs a running event loop (call from an async context or app startup).
        """
        if self._scheduler is not None:
            return
        scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        scheduler.add_job(
            self._tick,
            IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            next_run_time=datetime.now(),
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("[Scheduler] Starting reminder scheduler (every %ss)", self.interval_seconds)

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.shutdown(wait=False)
        finally:
            self._scheduler = None
        logger.info("[Scheduler] Reminder scheduler stopped")

    async def _tick(self) -> None:
        # Ticks fire on a fixed cadence; never let two sweeps overlap
        if self._sweep_lock.locked():
            logger.debug("[Scheduler] Previous sweep still running; skipping this tick")
            return
        async with self._sweep_lock:
            await self.sweep()

    async def sweep(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Run one due-reminder scan. Never raises; returns per-sweep counts."""
        now = now or self._clock()
        counts = {"users": 0, "considered": 0, "due": 0, "dispatched": 0, "skipped": 0, "errors": 0}
        logger.debug("[Scheduler] Checking reminders at %s on %s", now.strftime("%H:%M"), weekday_name(now))
        try:
            users = await self.storage.get_users()
        except Exception:
            logger.exception("[Scheduler] Could not load users")
            counts["errors"] += 1
            users = []
        for user in users:
            counts["users"] += 1
            try:
                reminders = await self.storage.get_reminders(user.id)
            except Exception:
                logger.exception("[Scheduler] Could not load reminders for user %s", user.id)
                counts["errors"] += 1
                continue
            for reminder in reminders:
                if not reminder.active:
                    continue
                counts["considered"] += 1
                try:
                    if not is_due(reminder, now):
                        continue
                    counts["due"] += 1
                    if await self._dispatch(reminder, now):
                        counts["dispatched"] += 1
                    else:
                        counts["skipped"] += 1
                except NotFoundError as e:
                    logger.warning("[Scheduler] Skipping reminder %s: %s", reminder.id, e)
                    counts["skipped"] += 1
                except Exception:
                    logger.exception("[Scheduler] Reminder %s failed during sweep", reminder.id)
                    counts["errors"] += 1
        self.last_run = now
        self.last_counts = counts
        return counts

    async def _dispatch(self, reminder: schemas.Reminder, now: datetime) -> bool:
        medication = await self.storage.get_medication(reminder.medication_id)
        if medication is None:
            raise NotFoundError("Medication", reminder.medication_id)
        if self._should_dispatch is not None and not await self._should_dispatch(reminder, now):
            self._log_decision(reminder, now, "suppressed")
            return False
        result = await self.push_service.send_to_user(reminder.user_id, reminder_payload(reminder, medication))
        self._log_decision(reminder, now, "sent", result)
        logger.info(
            "[Scheduler] Sent reminder for %s to user %s: %s", medication.name, reminder.user_id, result
        )
        return True

    def _log_decision(self, reminder: schemas.Reminder, now: datetime, decision: str, result=None) -> None:
        if not env_flag("REMINDER_DECISION_LOG"):
            return
        logger.info(json.dumps({
            "evt": "reminder_decision",
            "reminder_id": reminder.id,
            "user_id": reminder.user_id,
            "scheduled": reminder.time,
            "notify_before": reminder.notify_before,
            "decision": decision,
            "result": result,
            "ts": now.isoformat(),
        }))
