from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

import schemas
from deps import get_current_user, get_scheduler, get_storage
from scheduler import REMINDER_URL, ReminderScheduler
from storage import Storage

router = APIRouter(prefix="/api", tags=["reminders"])


async def _owned_reminder(storage: Storage, reminder_id: int, user: schemas.User) -> schemas.Reminder:
    row = await storage.get_reminder(reminder_id)
    if not row or row.user_id != user.id:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return row


async def _check_medication(storage: Storage, medication_id: int, user: schemas.User) -> None:
    med = await storage.get_medication(medication_id)
    if not med or med.user_id != user.id:
        raise HTTPException(status_code=404, detail="Medication not found")


# Fixed paths first so they are not captured by /reminders/{reminder_id}
@router.get("/reminders/health")
async def reminders_health(scheduler: ReminderScheduler = Depends(get_scheduler)):
    """Last sweep time and counts. Resets on restart."""
    return {
        "running": scheduler.is_running,
        "interval_seconds": scheduler.interval_seconds,
        "last_run": scheduler.last_run.isoformat() if scheduler.last_run else None,
        "last_counts": scheduler.last_counts,
    }


@router.get("/reminders/taken")
async def mark_reminder_taken(
    id: Optional[int] = Query(None),
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    """Target of the notification's "Mark as Taken" action."""
    if id is None:
        raise HTTPException(status_code=400, detail="Query parameter id is required")
    reminder = await _owned_reminder(storage, id, current_user)
    await storage.create_medication_log(
        current_user.id,
        schemas.MedicationLogCreate(reminder_id=reminder.id, scheduled=reminder.time, taken=True),
    )
    return RedirectResponse(url=REMINDER_URL, status_code=303)


@router.get("/reminders", response_model=List[schemas.Reminder])
async def list_reminders(storage: Storage = Depends(get_storage), current_user: schemas.User = Depends(get_current_user)):
    return await storage.get_reminders(current_user.id)


@router.post("/reminders", response_model=schemas.Reminder, status_code=201)
async def create_reminder(
    payload: schemas.ReminderCreate,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    await _check_medication(storage, payload.medication_id, current_user)
    return await storage.create_reminder(current_user.id, payload)


@router.get("/reminders/{reminder_id}", response_model=schemas.Reminder)
async def get_reminder(reminder_id: int, storage: Storage = Depends(get_storage), current_user: schemas.User = Depends(get_current_user)):
    return await _owned_reminder(storage, reminder_id, current_user)


# The web client edits with PUT; both verbs take a partial body
@router.api_route("/reminders/{reminder_id}", methods=["PUT", "PATCH"], response_model=schemas.Reminder)
async def update_reminder(
    reminder_id: int,
    payload: schemas.ReminderUpdate,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    await _owned_reminder(storage, reminder_id, current_user)
    if payload.medication_id is not None:
        await _check_medication(storage, payload.medication_id, current_user)
    return await storage.update_reminder(reminder_id, payload)


@router.delete("/reminders/{reminder_id}")
async def delete_reminder(reminder_id: int, storage: Storage = Depends(get_storage), current_user: schemas.User = Depends(get_current_user)):
    await _owned_reminder(storage, reminder_id, current_user)
    await storage.delete_reminder(reminder_id)
    return {"deleted": reminder_id}


@router.get("/medication-logs", response_model=List[schemas.MedicationLog])
async def list_medication_logs(
    day: Optional[date] = Query(None, alias="date"),
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    if day is not None:
        return await storage.get_medication_logs_by_date(current_user.id, day)
    return await storage.get_medication_logs(current_user.id)


@router.post("/medication-logs", response_model=schemas.MedicationLog, status_code=201)
async def create_medication_log(
    payload: schemas.MedicationLogCreate,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    await _owned_reminder(storage, payload.reminder_id, current_user)
    return await storage.create_medication_log(current_user.id, payload)
