"""Shared FastAPI dependencies: the record store, push service, scheduler and current user."""
from typing import Optional

from fastapi import Depends, Header, HTTPException

import schemas
from push_service import PushService, load_vapid_config
from scheduler import ReminderScheduler
from storage import Storage, build_storage
from utils import env_int

DEFAULT_USER_ID = env_int("DEFAULT_USER_ID", 1)

_storage: Optional[Storage] = None
_push_service: Optional[PushService] = None
_scheduler: Optional[ReminderScheduler] = None


def get_storage() -> Storage:
    global _storage
    if _storage is None:
        _storage = build_storage()
    return _storage


def get_push_service() -> PushService:
    global _push_service
    if _push_service is None:
        # VAPID identity is loaded once per process
        _push_service = PushService(get_storage(), load_vapid_config())
    return _push_service


def get_scheduler() -> ReminderScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = ReminderScheduler(get_storage(), get_push_service())
    return _scheduler


async def get_current_user(
    x_user_id: Optional[int] = Header(None),
    storage: Storage = Depends(get_storage),
) -> schemas.User:
    # Stand-in for a session layer: trust the X-User-Id header, else the default user
    user_id = x_user_id if x_user_id is not None else DEFAULT_USER_ID
    user = await storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user
