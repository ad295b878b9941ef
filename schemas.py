import re
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from datetime import date, datetime
from typing import Optional, List, Any

# ISO weekday order: token "1" is Monday, "7" is Sunday
WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
EVERY_DAY = "daily"

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> tuple[int, int]:
    """Split a 24-hour ``HH:MM`` string into (hour, minute)."""
    m = _HHMM.match(value or "")
    if not m:
        raise ValueError(f"time must be HH:MM (24-hour), got {value!r}")
    return int(m.group(1)), int(m.group(2))


def parse_days(days: str) -> set[str]:
    """Normalize a comma-separated day list to lowercase weekday names.

    Accepts ISO weekday numbers (1-7), English weekday names and the
    ``daily`` sentinel, which is kept as-is.
    """
    out: set[str] = set()
    for raw in (days or "").split(","):
        tok = raw.strip().lower()
        if not tok:
            continue
        if tok.isdigit():
            n = int(tok)
            if not 1 <= n <= 7:
                raise ValueError(f"day number must be 1-7, got {raw!r}")
            out.add(WEEKDAY_NAMES[n - 1])
        elif tok in WEEKDAY_NAMES or tok == EVERY_DAY:
            out.add(tok)
        else:
            raise ValueError(f"unknown day token {raw!r}")
    return out


def _join_days(v: Any) -> Any:
    # The web client posts days as a list of strings
    if isinstance(v, (list, tuple, set)):
        return ",".join(str(d) for d in v)
    return v


# ---- Users ----
class UserBase(BaseModel):
    username: str
    name: Optional[str] = None
    target_inr_min: float = 2.0
    target_inr_max: float = 3.0

class UserCreate(UserBase):
    pass

class User(UserBase):
    id: int
    model_config = ConfigDict(from_attributes=True)


# ---- PT/INR tests ----
class PtTestBase(BaseModel):
    test_date: date
    inr_value: float = Field(gt=0)
    notes: Optional[str] = None

class PtTestCreate(PtTestBase):
    pass

class PtTest(PtTestBase):
    id: int
    user_id: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)

class PtTestOut(PtTest):
    status: str  # "low" | "in_range" | "high" against the user's target INR


# ---- Medications ----
class MedicationBase(BaseModel):
    name: str
    dosage: str
    quantity: str = "1 tablet"
    instructions: Optional[str] = None

class MedicationCreate(MedicationBase):
    pass

class MedicationUpdate(BaseModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    quantity: Optional[str] = None
    instructions: Optional[str] = None

    @field_validator("name", "dosage", "quantity")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

class Medication(MedicationBase):
    id: int
    user_id: int
    model_config = ConfigDict(from_attributes=True)


# ---- Reminders ----
class ReminderBase(BaseModel):
    medication_id: int
    time: str  # HH:MM
    days: str  # "1,2,3,4,5,6,7" | "monday,friday" | "daily"
    active: bool = True
    notify_before: int = Field(default=15, ge=0)  # minutes

    @field_validator("days", mode="before")
    @classmethod
    def _days_from_list(cls, v):
        return _join_days(v)

    @field_validator("time")
    @classmethod
    def _check_time(cls, v: str) -> str:
        parse_hhmm(v)
        return v

    @field_validator("days")
    @classmethod
    def _check_days(cls, v: str) -> str:
        parse_days(v)
        return v

    @model_validator(mode="after")
    def _active_needs_days(self):
        if self.active and not parse_days(self.days):
            raise ValueError("an active reminder needs at least one day")
        return self

class ReminderCreate(ReminderBase):
    pass

class ReminderUpdate(BaseModel):
    medication_id: Optional[int] = None
    time: Optional[str] = None
    days: Optional[str] = None
    active: Optional[bool] = None
    notify_before: Optional[int] = Field(default=None, ge=0)

    @field_validator("days", mode="before")
    @classmethod
    def _days_from_list(cls, v):
        return _join_days(v)

class Reminder(ReminderBase):
    id: int
    user_id: int
    model_config = ConfigDict(from_attributes=True)


# ---- Medication logs ----
class MedicationLogCreate(BaseModel):
    reminder_id: int
    scheduled: str
    taken: bool = True
    taken_at: Optional[datetime] = None

class MedicationLog(BaseModel):
    id: int
    reminder_id: int
    user_id: int
    scheduled: str
    taken: bool
    taken_at: datetime
    model_config = ConfigDict(from_attributes=True)


# ---- Push subscriptions ----
class PushSubscriptionKeys(BaseModel):
    p256dh: str
    auth: str

class PushSubscriptionIn(BaseModel):
    """Browser ``PushSubscription.toJSON()`` shape."""
    endpoint: str
    expirationTime: Optional[float] = None
    keys: PushSubscriptionKeys

class PushSubscriptionCreate(BaseModel):
    endpoint: str
    p256dh: str
    auth: str

class PushSubscription(BaseModel):
    id: int
    user_id: int
    endpoint: str
    p256dh: str
    auth: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)

class EndpointRequest(BaseModel):
    endpoint: str

class VapidPublicKeyResponse(BaseModel):
    publicKey: str

class PushSendTestResponse(BaseModel):
    success: bool
    message: str


# ---- Notification payloads ----
class NotificationAction(BaseModel):
    action: str
    title: str

class NotificationPayload(BaseModel):
    title: str
    body: str
    tag: Optional[str] = None
    url: Optional[str] = None
    icon: Optional[str] = None
    badge: Optional[str] = None
    actions: List[NotificationAction] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)
