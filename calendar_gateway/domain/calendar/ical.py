"""
iCal Codec
Builds iCalendar (RFC 5545) output with the icalendar library and decodes
inbound VEVENT payloads with a lenient line parser: no RRULE, no VTIMEZONE,
UTC instants only, first VEVENT wins.
"""

import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from icalendar import Calendar, Event
from icalendar.prop import vText
from pydantic import BaseModel, Field

from ...exceptions import CalendarValidationError
from ...utils.datetime_utils import ensure_utc
from .schemas import CATEGORY_BUSY, CalendarEvent, CalendarSettings

UTC_FORMAT = "%Y%m%dT%H%M%SZ"
UTC_PATTERN = re.compile(r"^\d{8}T\d{6}Z$")
_UNESCAPE_PATTERN = re.compile(r"\\([\\;,nN])")


class CalendarMetadata(BaseModel):
    """VCALENDAR envelope properties"""

    prodid: str
    name: str
    description: str = ""
    timezone: str = "UTC"
    relcalid: Optional[str] = None
    refresh_interval: Optional[int] = None

    @classmethod
    def from_settings(
        cls, settings: CalendarSettings, prodid: str, relcalid: Optional[str] = None
    ) -> "CalendarMetadata":
        return cls(
            prodid=prodid,
            name=settings.name,
            description=settings.description,
            timezone=settings.timezone,
            relcalid=relcalid,
            refresh_interval=settings.refresh_interval,
        )


class DecodedEvent(BaseModel):
    """Fields recovered from an inbound VEVENT"""

    uid: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    dtstart: Optional[datetime] = None
    dtend: Optional[datetime] = None
    categories: list[str] = Field(default_factory=list)


# ============================================================================
# PARSER PRIMITIVES
# ============================================================================


def plain_text(value: str) -> str:
    """TEXT values carry no bare carriage returns; CRLF becomes a newline"""
    return value.replace("\r\n", "\n").replace("\r", "")


def unescape_text(value: str) -> str:
    def _replace(match):
        char = match.group(1)
        return "\n" if char in "nN" else char

    return _UNESCAPE_PATTERN.sub(_replace, value)


def parse_instant(value: str) -> datetime:
    """Parse a UTC basic-form instant; anything else is rejected"""
    value = value.strip()
    if not UTC_PATTERN.match(value):
        raise CalendarValidationError(f"Unsupported date-time value: {value!r}")
    try:
        return datetime.strptime(value, UTC_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise CalendarValidationError(f"Invalid date-time value: {value!r}") from e


def unfold_lines(text: str) -> list[str]:
    lines: list[str] = []
    for raw in re.split(r"\r\n|\n|\r", text):
        if raw[:1] in (" ", "\t") and lines:
            lines[-1] += raw[1:]
        else:
            lines.append(raw)
    return lines


def split_content_line(line: str) -> tuple[str, dict[str, str], str]:
    """
    Split ``NAME;PARAM=x:VALUE`` into name, params and raw value.

    The first colon outside a quoted parameter value ends the property head.
    """
    in_quotes = False
    for index, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ":" and not in_quotes:
            head, value = line[:index], line[index + 1 :]
            break
    else:
        return line.strip().upper(), {}, ""

    name, *raw_params = head.split(";")
    params = {}
    for raw in raw_params:
        key, _, param_value = raw.partition("=")
        params[key.strip().upper()] = param_value.strip('"')
    return name.strip().upper(), params, value


def split_list(value: str) -> list[str]:
    """Split a comma-separated TEXT list, honoring escaped commas"""
    items = []
    current = ""
    escaped = False
    for char in value:
        if escaped:
            current += "\\" + char
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ",":
            items.append(current)
            current = ""
        else:
            current += char
    if escaped:
        current += "\\"
    items.append(current)
    return [unescape_text(item).strip() for item in items if item.strip()]


# ============================================================================
# CODEC
# ============================================================================


class ICalCodec:
    """
    Transform between CalendarEvent values and iCalendar text.

    Output goes through icalendar, which owns TEXT escaping and 75-octet line
    folding. Properties keep the order they are added in.
    """

    def __init__(self, prodid: str = "-//CBRC//Calendar//EN"):
        self.prodid = prodid

    def build_event(self, event: CalendarEvent, dtstamp: Optional[datetime] = None) -> Event:
        vevent = Event()
        vevent.add("uid", event.uid)
        vevent.add("dtstamp", ensure_utc(dtstamp or event.last_modified))
        vevent.add("dtstart", ensure_utc(event.start))
        vevent.add("dtend", ensure_utc(event.end))
        vevent.add("summary", plain_text(event.summary))
        if event.description:
            vevent.add("description", plain_text(event.description))
        vevent.add("status", event.status)
        vevent.add("categories", [event.category])
        if event.category == CATEGORY_BUSY:
            vevent.add("transp", "OPAQUE")
        if event.location:
            vevent.add("location", plain_text(event.location))
        if event.contact:
            vevent.add("contact", plain_text(event.contact))
        vevent.add("last-modified", ensure_utc(event.last_modified))
        return vevent

    def _calendar(self, prodid: str) -> Calendar:
        calendar = Calendar()
        calendar.add("version", "2.0")
        calendar.add("prodid", prodid)
        calendar.add("calscale", "GREGORIAN")
        return calendar

    @staticmethod
    def _serialize(component) -> str:
        return component.to_ical(sorted=False).decode("utf-8")

    def encode_event(self, event: CalendarEvent, dtstamp: Optional[datetime] = None) -> str:
        return self._serialize(self.build_event(event, dtstamp))

    def encode_calendar(self, events: Iterable[CalendarEvent], metadata: CalendarMetadata) -> str:
        """Subscription envelope with every event, in the order given"""
        calendar = self._calendar(metadata.prodid)
        calendar.add("method", "PUBLISH")
        calendar.add("x-wr-calname", plain_text(metadata.name))
        calendar.add("x-wr-caldesc", plain_text(metadata.description))
        calendar.add("x-wr-timezone", metadata.timezone)
        if metadata.relcalid:
            calendar.add("x-wr-relcalid", metadata.relcalid)
        if metadata.refresh_interval:
            calendar.add("x-published-ttl", vText(f"PT{metadata.refresh_interval}S"))
        for event in events:
            calendar.add_component(self.build_event(event))
        return self._serialize(calendar)

    def encode_resource(self, event: CalendarEvent) -> str:
        """Single calendar object resource as served over CalDAV"""
        calendar = self._calendar(self.prodid)
        calendar.add_component(self.build_event(event))
        return self._serialize(calendar)

    def decode_event(self, text: str) -> DecodedEvent:
        """Extract the first VEVENT; unknown properties are ignored"""
        fields: dict = {}
        in_event = False
        seen_event = False
        depth = 0  # nested components inside the VEVENT (e.g. VALARM)

        for line in unfold_lines(text):
            if not line.strip():
                continue
            name, params, value = split_content_line(line)

            if name == "BEGIN":
                if in_event:
                    depth += 1
                elif value.strip().upper() == "VEVENT":
                    in_event = True
                    seen_event = True
                continue
            if name == "END":
                if in_event and depth:
                    depth -= 1
                elif in_event and value.strip().upper() == "VEVENT":
                    break
                continue
            if not in_event or depth:
                continue

            if name == "UID":
                fields["uid"] = value.strip()
            elif name == "SUMMARY":
                fields["summary"] = unescape_text(value)
            elif name == "DESCRIPTION":
                fields["description"] = unescape_text(value)
            elif name in ("DTSTART", "DTEND"):
                if "TZID" in params or params.get("VALUE", "DATE-TIME").upper() != "DATE-TIME":
                    raise CalendarValidationError(f"{name} must be a UTC date-time")
                fields[name.lower()] = parse_instant(value)
            elif name == "CATEGORIES":
                fields.setdefault("categories", []).extend(
                    item.upper() for item in split_list(value)
                )

        if not seen_event:
            raise CalendarValidationError("No VEVENT found in request body")
        return DecodedEvent(**fields)
