"""Tests for merging appointments and busy slots into one event sequence."""

from datetime import date, datetime, time, timezone

import pytest

from calendar_gateway.domain.calendar.aggregator import (
    CalendarAggregator,
    appointment_to_event,
    resolve_resource_name,
)
from calendar_gateway.domain.calendar.schemas import AppointmentRecord, DateRange
from calendar_gateway.exceptions import NotFoundError

BOTH = frozenset({"appointments", "busy_slots"})
APPOINTMENTS = frozenset({"appointments"})
BUSY = frozenset({"busy_slots"})


@pytest.fixture
def aggregator(store):
    return CalendarAggregator(store)


class TestResolveResourceName:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("appointment-a1.ics", ("APPOINTMENT", "a1")),
            ("appointment-a1", ("APPOINTMENT", "a1")),
            ("busy-b1.ics", ("BUSY", "b1")),
            ("3F2504E0-4F89-11D3.ics", ("BUSY", "3F2504E0-4F89-11D3")),
        ],
    )
    def test_prefix_decides_source(self, name, expected):
        assert resolve_resource_name(name) == expected


class TestAppointmentEvents:
    def test_local_time_converted_to_utc(self, calendar_settings):
        record = AppointmentRecord(
            id="a1",
            first_name="Anna",
            last_name="Muster",
            appointment_date=date(2025, 7, 1),
            appointment_time=time(10, 0),
            duration_minutes=90,
        )
        event = appointment_to_event(record, calendar_settings)

        # Vienna is UTC+2 in summer
        assert event.start == datetime(2025, 7, 1, 8, 0, tzinfo=timezone.utc)
        assert event.end == datetime(2025, 7, 1, 9, 30, tzinfo=timezone.utc)

    def test_summary_and_description(self, calendar_settings):
        record = AppointmentRecord(
            id="a1",
            first_name="Anna",
            last_name="Muster",
            email="anna@example.com",
            phone="0660",
            appointment_date=date(2025, 1, 10),
            appointment_time=time(10, 0),
            duration_minutes=60,
            price_euros=45,
            service_title="Haarschnitt",
            status="cancelled",
            special_requests="Bitte kurz",
        )
        event = appointment_to_event(record, calendar_settings)

        assert event.uid == "appointment-a1"
        assert event.summary == "Termin: Anna Muster - Haarschnitt"
        assert event.status == "CANCELLED"
        assert event.category == "APPOINTMENT"
        assert event.location == "Hauptstraße 1, Wien"
        assert event.contact == "salon@example.com"
        assert "Preis: 45.00€" in event.description
        assert "Besondere Wünsche: Bitte kurz" in event.description
        assert event.description.endswith("\n\nKontakt: +43 1 234567")


class TestList:
    def test_merges_and_sorts_by_start(self, aggregator, seeded, calendar_settings):
        events = aggregator.list(BOTH, settings=calendar_settings)

        assert [e.uid for e in events] == ["appointment-a1", "busy-b1"]

    def test_scope_isolation(self, aggregator, seeded, calendar_settings):
        assert [e.uid for e in aggregator.list(APPOINTMENTS, settings=calendar_settings)] == [
            "appointment-a1"
        ]
        assert [e.uid for e in aggregator.list(BUSY, settings=calendar_settings)] == ["busy-b1"]
        assert aggregator.list(frozenset(), settings=calendar_settings) == []

    def test_equal_starts_ordered_by_uid(self, aggregator, make_busy_slot, calendar_settings):
        start = datetime(2025, 2, 1, 9, 0, tzinfo=timezone.utc)
        end = datetime(2025, 2, 1, 10, 0, tzinfo=timezone.utc)
        make_busy_slot("zz", start_datetime=start, end_datetime=end)
        make_busy_slot("aa", start_datetime=start, end_datetime=end)

        events = aggregator.list(BUSY, settings=calendar_settings)

        assert [e.uid for e in events] == ["busy-aa", "busy-zz"]

    def test_truncation_keeps_first_n(self, aggregator, make_busy_slot, calendar_settings):
        for day in range(1, 6):
            make_busy_slot(
                f"s{day}",
                start_datetime=datetime(2025, 3, day, 9, 0, tzinfo=timezone.utc),
                end_datetime=datetime(2025, 3, day, 10, 0, tzinfo=timezone.utc),
            )

        events = aggregator.list(BUSY, max_events=3, settings=calendar_settings)

        assert [e.source_id for e in events] == ["s1", "s2", "s3"]

    def test_settings_max_events_applies(self, aggregator, seeded, calendar_settings):
        limited = calendar_settings.model_copy(update={"max_events": 1})

        assert len(aggregator.list(BOTH, settings=limited)) == 1

    def test_date_range(self, aggregator, seeded, make_appointment, calendar_settings):
        make_appointment("a2", appointment_date=date(2025, 2, 20))

        events = aggregator.list(
            BOTH,
            DateRange(start=date(2025, 2, 1), end=date(2025, 2, 28)),
            settings=calendar_settings,
        )

        assert [e.uid for e in events] == ["appointment-a2"]


class TestGet:
    def test_get_by_prefixed_name(self, aggregator, seeded, calendar_settings):
        event = aggregator.get(BOTH, "busy-b1.ics", calendar_settings)

        assert event.summary == "BESETZT: Lunch"
        assert event.description == "Zeitblock reserviert"

    def test_out_of_scope_is_not_found(self, aggregator, seeded, calendar_settings):
        with pytest.raises(NotFoundError):
            aggregator.get(APPOINTMENTS, "busy-b1.ics", calendar_settings)
        with pytest.raises(NotFoundError):
            aggregator.get(BUSY, "appointment-a1.ics", calendar_settings)

    def test_shared_id_resolved_by_prefix(self, aggregator, make_appointment, make_busy_slot, calendar_settings):
        make_appointment("42")
        make_busy_slot("42")

        assert aggregator.get(BOTH, "appointment-42.ics", calendar_settings).category == "APPOINTMENT"
        assert aggregator.get(BOTH, "busy-42.ics", calendar_settings).category == "BUSY"

    def test_missing_event(self, aggregator, seeded, calendar_settings):
        with pytest.raises(NotFoundError):
            aggregator.get(BOTH, "busy-nope.ics", calendar_settings)

    def test_client_created_slot_keeps_its_name(self, aggregator, make_busy_slot, calendar_settings):
        make_busy_slot("6F1C", client_uid="6F1C-CLIENT-UID")

        event = aggregator.get(BOTH, "6F1C.ics", calendar_settings)

        assert event.uid == "6F1C-CLIENT-UID"
        assert event.resource_name == "6F1C.ics"
        assert aggregator.list(BUSY, settings=calendar_settings)[0].resource_name == "6F1C.ics"
