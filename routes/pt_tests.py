from typing import List

from fastapi import APIRouter, Depends, HTTPException

import schemas
from deps import get_current_user, get_storage
from storage import Storage

router = APIRouter(prefix="/api/pt-tests", tags=["pt-tests"])


def inr_status(inr_value: float, user: schemas.User) -> str:
    if inr_value < user.target_inr_min:
        return "low"
    if inr_value > user.target_inr_max:
        return "high"
    return "in_range"


def _with_status(test: schemas.PtTest, user: schemas.User) -> schemas.PtTestOut:
    return schemas.PtTestOut(**test.model_dump(), status=inr_status(test.inr_value, user))


@router.get("", response_model=List[schemas.PtTestOut])
async def list_pt_tests(storage: Storage = Depends(get_storage), current_user: schemas.User = Depends(get_current_user)):
    """PT/INR history, newest test first."""
    return [_with_status(t, current_user) for t in await storage.get_pt_tests(current_user.id)]


@router.post("", response_model=schemas.PtTestOut, status_code=201)
async def create_pt_test(
    payload: schemas.PtTestCreate,
    storage: Storage = Depends(get_storage),
    current_user: schemas.User = Depends(get_current_user),
):
    test = await storage.create_pt_test(current_user.id, payload)
    return _with_status(test, current_user)


@router.get("/{test_id}", response_model=schemas.PtTestOut)
async def get_pt_test(test_id: int, storage: Storage = Depends(get_storage), current_user: schemas.User = Depends(get_current_user)):
    test = await storage.get_pt_test(test_id)
    if not test or test.user_id != current_user.id:
        raise HTTPException(status_code=404, detail="PT test not found")
    return _with_status(test, current_user)
