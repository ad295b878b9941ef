"""Web push delivery for medication reminders.

Subscriptions are browser-issued endpoints plus ``p256dh``/``auth`` keys. We
sign every message with one process-wide VAPID key pair and hand the encrypted
payload to the subscription's push service through pywebpush.

A 404 or 410 from the push service means the endpoint is gone for good; that
subscription is deleted here and nowhere else. Every other failure is
treated as transient: logged, counted, subscription kept, no retry.
"""
import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import requests
from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid
from py_vapid.utils import b64urlencode
from pydantic import ValidationError as PydanticValidationError
from pywebpush import webpush, WebPushException

import schemas
from errors import (
    DeliveryError,
    MalformedSubscriptionError,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from storage import Storage
from utils import endpoint_tail, env_float

logger = logging.getLogger(__name__)

DEFAULT_VAPID_SUBJECT = "mailto:support@warfarinmanager.com"
DEFAULT_ICON = "/icons/medicine-icon-192.png"
DEFAULT_BADGE = "/icons/badge-72.png"
PUSH_SEND_TIMEOUT = env_float("PUSH_SEND_TIMEOUT", 10.0)

# Push service responses that mean the subscription no longer exists
GONE_STATUS_CODES = {404, 410}

PayloadLike = Union[schemas.NotificationPayload, dict]


@dataclass(frozen=True)
class VapidConfig:
    private_key: Vapid
    public_key: str
    subject: str

    @property
    def claims(self) -> dict:
        # pywebpush writes "aud"/"exp" into the dict it gets, so hand out a fresh one
        return {"sub": self.subject}


def _public_key_b64(vapid: Vapid) -> str:
    raw = vapid.public_key.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )
    return b64urlencode(raw)


def load_vapid_config() -> VapidConfig:
    """Read the VAPID identity from the environment, generating one if none is configured."""
    private = (os.getenv("VAPID_PRIVATE_KEY") or "").strip()
    subject = os.getenv("VAPID_SUBJECT", DEFAULT_VAPID_SUBJECT)
    if private:
        if private.startswith("-----BEGIN"):
            vapid = Vapid.from_pem(private.encode("utf-8"))
        else:
            vapid = Vapid.from_string(private_key=private)
    else:
        logger.warning(
            "[Push] VAPID_PRIVATE_KEY not set; generated a temporary key pair. "
            "Browsers must re-subscribe after every restart until a key is configured."
        )
        vapid = Vapid()
        vapid.generate_keys()
    public = (os.getenv("VAPID_PUBLIC_KEY") or "").strip() or _public_key_b64(vapid)
    return VapidConfig(private_key=vapid, public_key=public, subject=subject)


def parse_subscription(body: Any) -> schemas.PushSubscriptionIn:
    """Validate a browser subscription object; raise ``MalformedSubscriptionError`` if unusable."""
    if isinstance(body, schemas.PushSubscriptionIn):
        return body
    if not isinstance(body, dict) or not body.get("endpoint") or not isinstance(body.get("keys"), dict):
        raise MalformedSubscriptionError("Invalid subscription object")
    keys = body["keys"]
    if not keys.get("p256dh") or not keys.get("auth"):
        raise MalformedSubscriptionError("Invalid subscription object: missing key material")
    try:
        return schemas.PushSubscriptionIn.model_validate(body)
    except PydanticValidationError as e:
        raise MalformedSubscriptionError(f"Invalid subscription object: {e}") from e


def as_payload(payload: PayloadLike) -> schemas.NotificationPayload:
    if isinstance(payload, schemas.NotificationPayload):
        return payload
    return schemas.NotificationPayload.model_validate(payload)


def build_notification(payload: PayloadLike) -> dict:
    """Wrap a payload in the envelope the service worker's push handler reads."""
    p = as_payload(payload)
    return {
        "notification": {
            "title": p.title,
            "body": p.body,
            "icon": p.icon or DEFAULT_ICON,
            "badge": p.badge or DEFAULT_BADGE,
            "tag": p.tag,
            "actions": [a.model_dump() for a in p.actions],
            "data": {**p.data, "url": p.url or "/"},
        }
    }


def subscription_info(subscription: schemas.PushSubscription) -> dict:
    return {
        "endpoint": subscription.endpoint,
        "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
    }


def _webpush_transport(info: dict, data: str, vapid_private_key: Vapid, vapid_claims: dict, timeout: float):
    return webpush(
        subscription_info=info,
        data=data,
        vapid_private_key=vapid_private_key,
        vapid_claims=vapid_claims,
        timeout=timeout,
    )


def classify_delivery_error(exc: BaseException) -> DeliveryError:
    if isinstance(exc, DeliveryError):
        return exc
    if isinstance(exc, WebPushException):
        status = getattr(getattr(exc, "response", None), "status_code", None)
        if status in GONE_STATUS_CODES:
            return PermanentDeliveryError(f"push endpoint gone ({status})", status_code=status)
        return TransientDeliveryError(f"push service rejected message: {exc}", status_code=status)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, requests.exceptions.Timeout)):
        return TransientDeliveryError("push send timed out")
    if isinstance(exc, requests.exceptions.RequestException):
        return TransientDeliveryError(f"network error: {exc}")
    return TransientDeliveryError(f"unexpected push error: {exc!r}")


class PushService:
    """Delivers notification payloads to every push endpoint a user has registered."""

    def __init__(
        self,
        storage: Storage,
        vapid: VapidConfig,
        transport: Optional[Callable] = None,
        timeout: float = PUSH_SEND_TIMEOUT,
    ):
        self.storage = storage
        self.vapid = vapid
        self.timeout = timeout
        self._transport = transport or _webpush_transport

    async def _deliver(self, subscription: schemas.PushSubscription, payload: schemas.NotificationPayload) -> None:
        message = json.dumps(build_notification(payload))
        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    self._transport,
                    subscription_info(subscription),
                    message,
                    self.vapid.private_key,
                    self.vapid.claims,
                    self.timeout,
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            raise classify_delivery_error(e) from e

    async def send_one(self, subscription: schemas.PushSubscription, payload: PayloadLike) -> bool:
        """Send to one endpoint. Returns False on any failure; prunes the subscription when it is gone."""
        try:
            await self._deliver(subscription, as_payload(payload))
            return True
        except PermanentDeliveryError as e:
            logger.info(
                "[Push] endpoint ...%s gone (%s); deleting subscription %s",
                endpoint_tail(subscription.endpoint), e.status_code, subscription.id,
            )
            try:
                await self.storage.delete_push_subscription(subscription.id)
            except Exception:
                logger.exception("[Push] could not delete stale subscription %s", subscription.id)
            return False
        except TransientDeliveryError as e:
            logger.warning(
                "[Push] send to subscription %s (...%s) failed: %s",
                subscription.id, endpoint_tail(subscription.endpoint), e,
            )
            return False

    async def send_to_user(self, user_id: int, payload: PayloadLike) -> dict[str, int]:
        """Send to all of a user's subscriptions. Never raises; returns ``{"sent", "failed"}``."""
        result = {"sent": 0, "failed": 0}
        try:
            message = as_payload(payload)
            subscriptions = await self.storage.get_push_subscriptions(user_id)
        except Exception:
            logger.exception("[Push] could not prepare notifications for user %s", user_id)
            return result
        for sub in subscriptions:
            if await self.send_one(sub, message):
                result["sent"] += 1
            else:
                result["failed"] += 1
        return result

    async def save_subscription(self, user_id: int, body: Any) -> schemas.PushSubscription:
        """Register a browser subscription for ``user_id``.

        Re-registering the same endpoint for the same user returns the stored
        record unchanged. An endpoint held by another user moves to this one.
        """
        sub = parse_subscription(body)
        existing = await self.storage.get_push_subscription_by_endpoint(sub.endpoint)
        if existing:
            if existing.user_id == user_id:
                return existing
            logger.info(
                "[Push] endpoint ...%s re-registered; moving from user %s to user %s",
                endpoint_tail(sub.endpoint), existing.user_id, user_id,
            )
            await self.storage.delete_push_subscription(existing.id)
        return await self.storage.create_push_subscription(
            user_id,
            schemas.PushSubscriptionCreate(endpoint=sub.endpoint, p256dh=sub.keys.p256dh, auth=sub.keys.auth),
        )
