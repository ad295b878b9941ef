from typing import List

from fastapi import APIRouter, Depends, HTTPException

import schemas
from deps import get_current_user, get_storage
from storage import Storage

router = APIRouter(prefix="/api/medications", tags=["medications"])


async def _owned_medication(storage: Storage, medication_id: int, user: schemas.User) -> schemas.Medication:
    row = await storage.get_medication(medication_id)
    if not row or row.user_id != user.id:
        raise HTTPException(status_code=404, detail="Medication not found")
    return row


@router.get("", response_model=List[schemas.Medication])
async def list_medications(storage: Storage = Depends(get_storage), current_user: schemas.User = Depends(get_current_user)):
    return await storage.get_medications(current_user.id)


@router.post("", response_model=schemas.Medication, status_code=201)
async def create_medication(
    payload: schemas.MedicationCreate,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    return await storage.create_medication(current_user.id, payload)


@router.get("/{medication_id}", response_model=schemas.Medication)
async def get_medication(medication_id: int, storage: Storage = Depends(get_storage), current_user: schemas.User = Depends(get_current_user)):
    return await _owned_medication(storage, medication_id, current_user)


@router.api_route("/{medication_id}", methods=["PUT", "PATCH"], response_model=schemas.Medication)
async def update_medication(
    medication_id: int,
    payload: schemas.MedicationUpdate,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    await _owned_medication(storage, medication_id, current_user)
    return await storage.update_medication(medication_id, payload)


@router.delete("/{medication_id}")
async def delete_medication(medication_id: int, storage: Storage = Depends(get_storage), current_user: schemas.User = Depends(get_current_user)):
    # Reminders still pointing here are skipped by the sweep
    await _owned_medication(storage, medication_id, current_user)
    await storage.delete_medication(medication_id)
    return {"deleted": medication_id}
