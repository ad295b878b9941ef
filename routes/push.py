from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

import schemas
from deps import get_current_user, get_push_service, get_storage
from errors import MalformedSubscriptionError
from push_service import PushService
from storage import Storage

router = APIRouter(prefix="/api/push", tags=["push"])

TEST_TITLE = "Test Notification"
TEST_BODY = "This is a test notification from your Warfarin Manager app!"


@router.get("/vapid-public-key", response_model=schemas.VapidPublicKeyResponse)
async def vapid_public_key(push: PushService = Depends(get_push_service)):
    return schemas.VapidPublicKeyResponse(publicKey=push.vapid.public_key)


@router.post("/register", status_code=201, response_model=schemas.PushSubscription)
async def register_subscription(
    body: Any = Body(None),
    current_user: schemas.User = Depends(get_current_user),
    push: PushService = Depends(get_push_service),
):
    try:
        return await push.save_subscription(current_user.id, body)
    except MalformedSubscriptionError:
        raise HTTPException(status_code=400, detail="Invalid subscription object")


@router.post("/send-test", response_model=schemas.PushSendTestResponse)
async def send_test_notification(
    current_user: schemas.User = Depends(get_current_user),
    push: PushService = Depends(get_push_service),
):
    result = await push.send_to_user(current_user.id, {"title": TEST_TITLE, "body": TEST_BODY, "tag": "test"})
    if result["sent"] > 0:
        return schemas.PushSendTestResponse(success=True, message=f"Sent notifications to {result['sent']} devices")
    if result["failed"] > 0:
        return schemas.PushSendTestResponse(success=False, message=f"Delivery failed for {result['failed']} devices")
    return schemas.PushSendTestResponse(success=False, message="No active subscriptions found")


@router.post("/check")
async def check_subscription(
    payload: schemas.EndpointRequest,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    sub = await storage.get_push_subscription_by_endpoint(payload.endpoint)
    return {"registered": bool(sub and sub.user_id == current_user.id)}


@router.delete("/unregister")
async def unregister_subscription(
    payload: schemas.EndpointRequest,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    sub = await storage.get_push_subscription_by_endpoint(payload.endpoint)
    if not sub:
        raise HTTPException(status_code=404, detail="Subscription not found")
    if sub.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Subscription belongs to another user")
    await storage.delete_push_subscription(sub.id)
    return {"deleted": sub.id}
