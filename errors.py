"""Error types shared by the record store, the push dispatcher and the scheduler."""
from typing import Optional


class ReminderServiceError(Exception):
    """Base class for errors raised by this service."""


class NotFoundError(ReminderServiceError):
    """A referenced user, medication, reminder or subscription does not exist."""

    def __init__(self, kind: str, record_id):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")


class ValidationError(ReminderServiceError):
    """A record payload failed validation before reaching the store."""


class MalformedSubscriptionError(ValidationError):
    """A push subscription is missing its endpoint or key material."""


class DeliveryError(ReminderServiceError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TransientDeliveryError(DeliveryError):
    """Network failure, timeout or non-terminal push service response. The subscription is kept."""


class PermanentDeliveryError(DeliveryError):
    """The push service reported the endpoint as gone (404/410). The subscription is pruned."""
