from datetime import date, datetime, time, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from calendar_gateway import config
from calendar_gateway.database import Base
from calendar_gateway.domain.calendar.repository import SqlSchedulingStore
from calendar_gateway.domain.calendar.schemas import CalendarSettings, TokenFields
from calendar_gateway.domain.calendar.settings import StaticSettingsProvider
from calendar_gateway.main import create_app
from calendar_gateway.models import Appointment, BusySlot
from calendar_gateway.standalone import create_standalone_app

SEEDED_AT = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)
ADMIN_KEY = "test-admin-key"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlSchedulingStore(session_factory)


@pytest.fixture
def calendar_settings():
    return CalendarSettings(
        name="CBRC Termine",
        description="Termine und Zeitblöcke",
        timezone="Europe/Vienna",
        contact_email="salon@example.com",
        contact_phone="+43 1 234567",
        location="Hauptstraße 1, Wien",
        refresh_interval=1800,
        max_events=1000,
    )


@pytest.fixture
def settings_provider(calendar_settings):
    return StaticSettingsProvider(calendar_settings)


def add_appointment(session_factory, appointment_id="a1", **overrides):
    values = {
        "first_name": "Anna",
        "last_name": "Muster",
        "email": "anna@example.com",
        "phone": "+43 660 1234567",
        "appointment_date": date(2025, 1, 10),
        "appointment_time": time(10, 0),
        "duration_minutes": 60,
        "price_euros": 45.0,
        "service_title": "Haarschnitt",
        "status": "confirmed",
        "created_at": SEEDED_AT,
        "updated_at": SEEDED_AT,
    }
    values.update(overrides)
    db = session_factory()
    try:
        db.add(Appointment(id=appointment_id, **values))
        db.commit()
    finally:
        db.close()


def add_busy_slot(session_factory, slot_id="b1", **overrides):
    values = {
        "start_datetime": datetime(2025, 1, 10, 13, 0, tzinfo=timezone.utc),
        "end_datetime": datetime(2025, 1, 10, 14, 0, tzinfo=timezone.utc),
        "title": "Lunch",
        "description": None,
        "created_at": SEEDED_AT,
        "updated_at": SEEDED_AT,
    }
    values.update(overrides)
    db = session_factory()
    try:
        db.add(BusySlot(id=slot_id, **values))
        db.commit()
    finally:
        db.close()


@pytest.fixture
def seeded(session_factory):
    """Appointment a1 (2025-01-10 10:00 Vienna, 60 min) and busy slot b1 (13:00-14:00Z)"""
    add_appointment(session_factory, "a1")
    add_busy_slot(session_factory, "b1")
    return session_factory


def issue_token(store, permissions, **overrides):
    _, secret = store.create_token(
        TokenFields(name=overrides.pop("name", "Test"), permissions=permissions, **overrides)
    )
    return secret


@pytest.fixture
def full_token(store):
    return issue_token(store, ["appointments", "busy_slots"], name="Full")


@pytest.fixture
def appointments_token(store):
    return issue_token(store, ["appointments"], name="Appointments only")


@pytest.fixture
def busy_token(store):
    return issue_token(store, ["busy_slots"], name="Busy only")


@pytest.fixture
def expired_token(store):
    return issue_token(
        store,
        ["appointments", "busy_slots"],
        name="Expired",
        expires_at=datetime.now(timezone.utc) - timedelta(days=1),
    )


@pytest.fixture
def app(store, settings_provider):
    return create_app(store=store, settings_provider=settings_provider)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def standalone_client(store, settings_provider):
    return TestClient(create_standalone_app(store=store, settings_provider=settings_provider))


@pytest.fixture
def admin_headers(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", ADMIN_KEY)
    return {"Authorization": f"Bearer {ADMIN_KEY}"}


@pytest.fixture
def make_appointment(session_factory):
    def _make(appointment_id, **overrides):
        add_appointment(session_factory, appointment_id, **overrides)

    return _make


@pytest.fixture
def make_busy_slot(session_factory):
    def _make(slot_id, **overrides):
        add_busy_slot(session_factory, slot_id, **overrides)

    return _make


@pytest.fixture
def make_token(store):
    def _make(permissions=("appointments", "busy_slots"), **overrides):
        return issue_token(store, list(permissions), **overrides)

    return _make
