"""
Calendar Aggregator
Merges appointments and busy slots into one ordered event sequence,
restricted to what the calling token may see.
"""

import logging
from datetime import timedelta
from typing import Optional

from ...exceptions import NotFoundError
from ...utils.datetime_utils import local_to_utc
from .repository import SchedulingStore
from .schemas import (
    CATEGORY_APPOINTMENT,
    CATEGORY_BUSY,
    PERMISSION_APPOINTMENTS,
    PERMISSION_BUSY_SLOTS,
    AppointmentRecord,
    BusySlotRecord,
    CalendarEvent,
    CalendarSettings,
    DateRange,
)
from .settings import default_settings

logger = logging.getLogger(__name__)

APPOINTMENT_UID_PREFIX = "appointment-"
BUSY_UID_PREFIX = "busy-"
BUSY_SUMMARY_PREFIX = "BESETZT: "
BUSY_DEFAULT_TITLE = "Zeitblock"
BUSY_PLACEHOLDER_DESCRIPTION = "Zeitblock reserviert"
DEFAULT_DURATION_MINUTES = 60


def resolve_resource_name(name: str) -> tuple[str, str]:
    """
    Map a resource name (``<uid>`` or ``<uid>.ics``) to (category, source id).

    The uid prefix alone decides the source. Names without a known prefix are
    client-created resources and always denote busy slots.
    """
    if name.endswith(".ics"):
        name = name[: -len(".ics")]
    if name.startswith(APPOINTMENT_UID_PREFIX):
        return CATEGORY_APPOINTMENT, name[len(APPOINTMENT_UID_PREFIX) :]
    if name.startswith(BUSY_UID_PREFIX):
        return CATEGORY_BUSY, name[len(BUSY_UID_PREFIX) :]
    return CATEGORY_BUSY, name


def appointment_to_event(appointment: AppointmentRecord, settings: CalendarSettings) -> CalendarEvent:
    start = local_to_utc(appointment.appointment_date, appointment.appointment_time, settings.timezone)
    duration = appointment.duration_minutes or DEFAULT_DURATION_MINUTES
    customer = f"{appointment.first_name} {appointment.last_name}".strip()
    service = appointment.service_title or "Service"

    lines = [
        f"Kunde: {customer}",
        f"Telefon: {appointment.phone or 'N/A'}",
        f"E-Mail: {appointment.email or 'N/A'}",
        f"Service: {appointment.service_title or 'N/A'}",
        f"Dauer: {appointment.duration_minutes or 'N/A'} Min",
        f"Preis: {f'{appointment.price_euros:.2f}€' if appointment.price_euros else 'N/A'}",
        f"Status: {appointment.status}",
    ]
    if appointment.special_requests:
        lines.append(f"Besondere Wünsche: {appointment.special_requests}")
    if settings.contact_phone:
        lines.append("")
        lines.append(f"Kontakt: {settings.contact_phone}")

    return CalendarEvent(
        uid=f"{APPOINTMENT_UID_PREFIX}{appointment.id}",
        source_id=appointment.id,
        category=CATEGORY_APPOINTMENT,
        start=start,
        end=start + timedelta(minutes=duration),
        summary=f"Termin: {customer} - {service}",
        description="\n".join(lines),
        status="CANCELLED" if appointment.status == "cancelled" else "CONFIRMED",
        location=settings.location or None,
        contact=settings.contact_email or None,
        last_modified=appointment.updated_at or appointment.created_at or start,
    )


def busy_slot_to_event(slot: BusySlotRecord, settings: CalendarSettings) -> CalendarEvent:
    """Client-created slots keep the UID and resource name their client chose"""
    return CalendarEvent(
        uid=slot.client_uid or f"{BUSY_UID_PREFIX}{slot.id}",
        file_name=f"{slot.id}.ics" if slot.client_uid else None,
        source_id=slot.id,
        category=CATEGORY_BUSY,
        start=slot.start_datetime,
        end=slot.end_datetime,
        summary=f"{BUSY_SUMMARY_PREFIX}{slot.title}",
        description=slot.description or BUSY_PLACEHOLDER_DESCRIPTION,
        status="CONFIRMED",
        location=settings.location or None,
        last_modified=slot.updated_at or slot.created_at or slot.start_datetime,
    )


class CalendarAggregator:
    """Read side over the Scheduling Store"""

    def __init__(self, store: SchedulingStore):
        self.store = store

    def list(
        self,
        permissions: frozenset,
        date_range: Optional[DateRange] = None,
        max_events: Optional[int] = None,
        settings: Optional[CalendarSettings] = None,
    ) -> list[CalendarEvent]:
        """
        All events visible to ``permissions``, sorted by start then uid.

        Truncation keeps the first ``max_events`` after sorting, so repeated
        requests over the same data return the same slice.
        """
        settings = settings or default_settings()
        limit = max_events if max_events is not None else settings.max_events

        events: list[CalendarEvent] = []
        if PERMISSION_APPOINTMENTS in permissions:
            events.extend(
                appointment_to_event(a, settings) for a in self.store.list_appointments(date_range)
            )
        if PERMISSION_BUSY_SLOTS in permissions:
            events.extend(
                busy_slot_to_event(s, settings) for s in self.store.list_busy_slots(date_range)
            )

        events.sort(key=lambda e: (e.start, e.uid))
        if limit is not None and len(events) > limit:
            logger.info(f"📊 Truncating calendar from {len(events)} to {limit} events")
            events = events[:limit]
        return events

    def get(
        self,
        permissions: frozenset,
        resource_name: str,
        settings: Optional[CalendarSettings] = None,
    ) -> CalendarEvent:
        settings = settings or default_settings()
        category, source_id = resolve_resource_name(resource_name)

        if category == CATEGORY_APPOINTMENT:
            if PERMISSION_APPOINTMENTS not in permissions:
                raise NotFoundError("Event not found")
            appointment = self.store.get_appointment(source_id)
            if appointment is None:
                raise NotFoundError("Event not found")
            return appointment_to_event(appointment, settings)

        if PERMISSION_BUSY_SLOTS not in permissions:
            raise NotFoundError("Event not found")
        slot = self.store.get_busy_slot(source_id)
        if slot is None:
            raise NotFoundError("Event not found")
        return busy_slot_to_event(slot, settings)
