"""Scheduling Store - the only way the gateway reaches persistence"""

import abc
import logging
from contextlib import contextmanager
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ...exceptions import UpstreamError
from ...models import Appointment, BusySlot, CalendarToken, generate_public_id
from ...security_utils import generate_secure_token, hash_token
from ...utils.datetime_utils import ensure_utc, utcnow
from .schemas import (
    AppointmentRecord,
    BusySlotFields,
    BusySlotRecord,
    DateRange,
    TokenFields,
    TokenRecord,
)

logger = logging.getLogger(__name__)


class SchedulingStore(abc.ABC):
    """
    Collaborator interface over appointments, busy slots and calendar tokens.

    Every operation is a single atomic record operation; implementations must be
    safe to share between concurrent requests.
    """

    @abc.abstractmethod
    def list_appointments(self, date_range: Optional[DateRange] = None) -> list[AppointmentRecord]:
        ...

    @abc.abstractmethod
    def get_appointment(self, appointment_id: str) -> Optional[AppointmentRecord]:
        ...

    @abc.abstractmethod
    def list_busy_slots(self, date_range: Optional[DateRange] = None) -> list[BusySlotRecord]:
        ...

    @abc.abstractmethod
    def get_busy_slot(self, slot_id: str) -> Optional[BusySlotRecord]:
        ...

    @abc.abstractmethod
    def upsert_busy_slot(self, slot_id: str, fields: BusySlotFields) -> tuple[BusySlotRecord, bool]:
        """Create or replace a busy slot; returns the stored record and whether it was created."""

    @abc.abstractmethod
    def delete_busy_slot(self, slot_id: str) -> bool:
        """Returns False when nothing was deleted."""

    @abc.abstractmethod
    def validate_token(self, secret: str) -> Optional[TokenRecord]:
        """Look up a token by secret. Activity and expiry are judged by the caller."""

    @abc.abstractmethod
    def touch_token_last_used(self, token_id: str) -> None:
        ...

    @abc.abstractmethod
    def create_token(self, fields: TokenFields) -> tuple[TokenRecord, str]:
        """Returns the new token and its secret; the secret is not retrievable later."""

    @abc.abstractmethod
    def set_token_active(self, token_id: str, active: bool) -> Optional[TokenRecord]:
        ...

    @abc.abstractmethod
    def delete_token(self, token_id: str) -> bool:
        ...

    @abc.abstractmethod
    def list_tokens(self) -> list[TokenRecord]:
        ...


class SqlSchedulingStore(SchedulingStore):
    """SQLAlchemy-backed store. Holds only a session factory; one session per call."""

    def __init__(self, session_factory: sessionmaker, now: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.now = now

    @contextmanager
    def _session(self):
        db: Session = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Scheduling store error: {e}")
            raise UpstreamError() from e
        finally:
            db.close()

    # Appointments (read-only)

    def list_appointments(self, date_range: Optional[DateRange] = None) -> list[AppointmentRecord]:
        with self._session() as db:
            query = db.query(Appointment)
            if date_range and date_range.start:
                query = query.filter(Appointment.appointment_date >= date_range.start)
            if date_range and date_range.end:
                query = query.filter(Appointment.appointment_date <= date_range.end)
            rows = query.order_by(Appointment.appointment_date, Appointment.appointment_time).all()
            return [AppointmentRecord.model_validate(row) for row in rows]

    def get_appointment(self, appointment_id: str) -> Optional[AppointmentRecord]:
        with self._session() as db:
            row = db.query(Appointment).filter(Appointment.id == appointment_id).first()
            return AppointmentRecord.model_validate(row) if row else None

    # Busy slots

    def list_busy_slots(self, date_range: Optional[DateRange] = None) -> list[BusySlotRecord]:
        with self._session() as db:
            query = db.query(BusySlot)
            if date_range and date_range.start:
                lower = datetime.combine(date_range.start, time.min, tzinfo=timezone.utc)
                query = query.filter(BusySlot.start_datetime >= lower)
            if date_range and date_range.end:
                upper = datetime.combine(
                    date_range.end + timedelta(days=1), time.min, tzinfo=timezone.utc
                )
                query = query.filter(BusySlot.end_datetime < upper)
            rows = query.order_by(BusySlot.start_datetime).all()
            return [BusySlotRecord.model_validate(row) for row in rows]

    def get_busy_slot(self, slot_id: str) -> Optional[BusySlotRecord]:
        with self._session() as db:
            row = db.query(BusySlot).filter(BusySlot.id == slot_id).first()
            return BusySlotRecord.model_validate(row) if row else None

    def upsert_busy_slot(self, slot_id: str, fields: BusySlotFields) -> tuple[BusySlotRecord, bool]:
        with self._session() as db:
            now = self.now()
            values = {
                "start_datetime": ensure_utc(fields.start_datetime),
                "end_datetime": ensure_utc(fields.end_datetime),
                "title": fields.title,
                "description": fields.description,
            }
            if fields.client_uid is not None:
                values["client_uid"] = fields.client_uid
            slot = db.query(BusySlot).filter(BusySlot.id == slot_id).first()
            created = slot is None
            if created:
                slot = BusySlot(id=slot_id, created_at=now, updated_at=now, **values)
                db.add(slot)
            else:
                current = BusySlotRecord.model_validate(slot)
                changed = any(getattr(current, key) != value for key, value in values.items())
                # Identical payloads leave updated_at (and therefore the ETag) untouched
                if changed:
                    for key, value in values.items():
                        setattr(slot, key, value)
                    slot.updated_at = now
            db.commit()
            db.refresh(slot)
            logger.info(f"✅ Busy slot {'created' if created else 'updated'}: {slot_id}")
            return BusySlotRecord.model_validate(slot), created

    def delete_busy_slot(self, slot_id: str) -> bool:
        with self._session() as db:
            deleted = db.query(BusySlot).filter(BusySlot.id == slot_id).delete()
            db.commit()
            return deleted > 0

    # Tokens

    def validate_token(self, secret: str) -> Optional[TokenRecord]:
        with self._session() as db:
            row = (
                db.query(CalendarToken)
                .filter(CalendarToken.token_hash == hash_token(secret))
                .first()
            )
            return TokenRecord.model_validate(row) if row else None

    def touch_token_last_used(self, token_id: str) -> None:
        with self._session() as db:
            db.query(CalendarToken).filter(CalendarToken.id == token_id).update(
                {CalendarToken.last_used_at: self.now()}
            )
            db.commit()

    def create_token(self, fields: TokenFields) -> tuple[TokenRecord, str]:
        secret = generate_secure_token(32)
        with self._session() as db:
            now = self.now()
            token = CalendarToken(
                id=generate_public_id(),
                name=fields.name,
                description=fields.description,
                token_hash=hash_token(secret),
                permissions=list(fields.permissions),
                expires_at=fields.expires_at,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            db.add(token)
            db.commit()
            db.refresh(token)
            logger.info(f"✅ Calendar token created: {token.id} ({token.name})")
            return TokenRecord.model_validate(token), secret

    def set_token_active(self, token_id: str, active: bool) -> Optional[TokenRecord]:
        with self._session() as db:
            token = db.query(CalendarToken).filter(CalendarToken.id == token_id).first()
            if not token:
                return None
            token.is_active = active
            token.updated_at = self.now()
            db.commit()
            db.refresh(token)
            return TokenRecord.model_validate(token)

    def delete_token(self, token_id: str) -> bool:
        with self._session() as db:
            deleted = db.query(CalendarToken).filter(CalendarToken.id == token_id).delete()
            db.commit()
            return deleted > 0

    def list_tokens(self) -> list[TokenRecord]:
        with self._session() as db:
            rows = db.query(CalendarToken).order_by(CalendarToken.created_at.desc()).all()
            return [TokenRecord.model_validate(row) for row in rows]
