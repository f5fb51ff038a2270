import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique ID for calendar records"""
    return str(uuid.uuid4())


class Appointment(Base):
    """Booked service appointment. Owned by the booking application, read-only here."""

    __tablename__ = "appointments"

    id = Column(String(64), primary_key=True, default=generate_public_id)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    appointment_date = Column(Date, nullable=False, index=True)
    appointment_time = Column(Time, nullable=False)  # Local time in the calendar timezone
    duration_minutes = Column(Integer, default=60, nullable=True)
    price_euros = Column(Float, nullable=True)
    service_title = Column(String(255), nullable=True)
    status = Column(String(20), default="pending", nullable=False)  # pending, confirmed, cancelled, completed
    special_requests = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class BusySlot(Base):
    """Manually blocked time range with no customer attached"""

    __tablename__ = "busy_slots"

    id = Column(String(255), primary_key=True, default=generate_public_id)
    start_datetime = Column(DateTime(timezone=True), nullable=False, index=True)
    end_datetime = Column(DateTime(timezone=True), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    # UID sent by a CalDAV client that created the slot under its own resource name
    client_uid = Column(String(255), nullable=True)
    # Set by the store so ETags follow real content changes
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class CalendarToken(Base):
    __tablename__ = "calendar_tokens"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    token_hash = Column(String(64), unique=True, index=True, nullable=False)  # sha256 of the secret
    permissions = Column(JSON, default=list, nullable=False)  # subset of appointments, busy_slots
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class CalendarSetting(Base):
    __tablename__ = "calendar_settings"

    setting_key = Column(String(100), primary_key=True)
    setting_value = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
