"""Calendar domain schemas - records, derived events and admin payloads"""

import hashlib
from datetime import date, datetime, time
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...utils.datetime_utils import ensure_utc

PERMISSION_APPOINTMENTS = "appointments"
PERMISSION_BUSY_SLOTS = "busy_slots"
VALID_PERMISSIONS = (PERMISSION_APPOINTMENTS, PERMISSION_BUSY_SLOTS)

CATEGORY_APPOINTMENT = "APPOINTMENT"
CATEGORY_BUSY = "BUSY"

EventCategory = Literal["APPOINTMENT", "BUSY"]


# ============================================================================
# STORE RECORDS
# ============================================================================


class AppointmentRecord(BaseModel):
    """Snapshot of an appointment row"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    appointment_date: date
    appointment_time: time
    duration_minutes: Optional[int] = 60
    price_euros: Optional[float] = None
    service_title: Optional[str] = None
    status: str = "pending"
    special_requests: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_instant(cls, v):
        return ensure_utc(v)


class BusySlotRecord(BaseModel):
    """Snapshot of a busy slot row"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    start_datetime: datetime
    end_datetime: datetime
    title: str
    description: Optional[str] = None
    client_uid: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_datetime", "end_datetime", "created_at", "updated_at")
    @classmethod
    def normalize_instant(cls, v):
        return ensure_utc(v)


class BusySlotFields(BaseModel):
    """Writable busy slot fields accepted by the store"""

    start_datetime: datetime
    end_datetime: datetime
    title: str
    description: Optional[str] = None
    client_uid: Optional[str] = None


class TokenRecord(BaseModel):
    """Calendar token without its secret"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    permissions: list[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("expires_at", "last_used_at", "created_at", "updated_at")
    @classmethod
    def normalize_instant(cls, v):
        return ensure_utc(v)


class TokenFields(BaseModel):
    name: str
    description: Optional[str] = None
    permissions: list[str] = Field(default_factory=lambda: list(VALID_PERMISSIONS))
    expires_at: Optional[datetime] = None


# ============================================================================
# REQUEST-SCOPED VALUES
# ============================================================================


class TokenIdentity(BaseModel):
    """Result of a successful token validation"""

    model_config = ConfigDict(frozen=True)

    token_id: str
    name: str
    permissions: frozenset[str]


class DateRange(BaseModel):
    """Inclusive calendar-date window used by the feed and REPORT prefiltering"""

    model_config = ConfigDict(frozen=True)

    start: Optional[date] = None
    end: Optional[date] = None


class CalendarEvent(BaseModel):
    """Unified, per-request view over one appointment or one busy slot"""

    uid: str
    source_id: str
    category: EventCategory
    start: datetime
    end: datetime
    summary: str
    description: Optional[str] = None
    status: str = "CONFIRMED"
    location: Optional[str] = None
    contact: Optional[str] = None
    last_modified: datetime
    # Resource name chosen by the client, when it differs from the uid
    file_name: Optional[str] = None

    @property
    def etag(self) -> str:
        digest = hashlib.md5(
            f"{self.uid}:{self.last_modified.isoformat()}".encode(), usedforsecurity=False
        ).hexdigest()
        return f'"{digest}"'

    @property
    def resource_name(self) -> str:
        return self.file_name or f"{self.uid}.ics"


# ============================================================================
# SETTINGS
# ============================================================================


class CalendarSettings(BaseModel):
    """Calendar metadata for envelopes and event decoration"""

    name: str
    description: str
    timezone: str
    contact_email: str = ""
    contact_phone: str = ""
    website: str = ""
    location: str = ""
    refresh_interval: int = 3600
    max_events: int = 1000


class CalendarSettingsUpdate(BaseModel):
    """Admin update payload; keys mirror the calendar_settings table"""

    calendar_name: Optional[str] = None
    calendar_description: Optional[str] = None
    calendar_timezone: Optional[str] = None
    calendar_contact_email: Optional[str] = None
    calendar_contact_phone: Optional[str] = None
    calendar_website: Optional[str] = None
    calendar_location: Optional[str] = None
    calendar_refresh_interval: Optional[str] = None
    calendar_max_events: Optional[str] = None

    @field_validator("calendar_refresh_interval", "calendar_max_events")
    @classmethod
    def validate_positive_number(cls, v):
        if v is None:
            return v
        try:
            number = int(v)
        except ValueError as e:
            raise ValueError("must be a positive number") from e
        if number < 1:
            raise ValueError("must be a positive number")
        return v.strip()

    @field_validator("calendar_contact_email")
    @classmethod
    def validate_email(cls, v):
        if v and "@" not in v:
            raise ValueError("Contact email must be a valid email address")
        return v


# ============================================================================
# ADMIN API
# ============================================================================


class TokenCreate(BaseModel):
    """Schema for generating a new calendar token"""

    name: str
    description: Optional[str] = None
    permissions: Optional[list[str]] = None
    expires_days: Optional[int] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Token name is required")
        return v.strip()

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v):
        if v is None:
            return v
        if not all(p in VALID_PERMISSIONS for p in v):
            raise ValueError("Invalid permissions. Must be array of: appointments, busy_slots")
        return v

    @field_validator("expires_days")
    @classmethod
    def validate_expires_days(cls, v):
        if v is not None and v < 1:
            raise ValueError("Expiration days must be a positive number")
        return v


class TokenStatusUpdate(BaseModel):
    is_active: bool


class TokenResponse(BaseModel):
    """Token as listed to administrators (never includes the secret)"""

    id: str
    name: str
    description: Optional[str]
    permissions: list[str]
    expires_at: Optional[datetime]
    last_used_at: Optional[datetime]
    is_active: bool
    created_at: Optional[datetime]


class TokenCreatedResponse(TokenResponse):
    """Returned once, right after creation"""

    token: str
