"""
WebDAV XML Responder
Builds multistatus documents for discovery and listing, and parses REPORT
request bodies.
"""

import hashlib
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from ...exceptions import CalendarValidationError
from ...utils.datetime_utils import format_http_date
from .ical import parse_instant
from .schemas import CalendarEvent, CalendarSettings

DAV_NS = "DAV:"
CALDAV_NS = "urn:ietf:params:xml:ns:caldav"
CALSERVER_NS = "http://calendarserver.org/ns/"

# Declared on every document whether used or not
NAMESPACE_DECLARATIONS = {
    "xmlns:D": DAV_NS,
    "xmlns:C": CALDAV_NS,
    "xmlns:CS": CALSERVER_NS,
}

XML_CONTENT_TYPE = "application/xml; charset=utf-8"
ICAL_CONTENT_TYPE = "text/calendar; charset=utf-8"

STATUS_OK = "HTTP/1.1 200 OK"
STATUS_NOT_FOUND = "HTTP/1.1 404 Not Found"

REPORT_CALENDAR_QUERY = "calendar-query"
REPORT_CALENDAR_MULTIGET = "calendar-multiget"


def element(tag: str, text: Optional[str] = None, *children: ET.Element, **attrs) -> ET.Element:
    el = ET.Element(tag, attrs)
    if text is not None:
        el.text = text
    el.extend(children)
    return el


def href_property(tag: str, href: str) -> ET.Element:
    return element(tag, None, element("D:href", href))


def collection_etag(events: Iterable[CalendarEvent]) -> str:
    """Aggregate tag over the member ETags; changes whenever any member changes"""
    digest = hashlib.md5(usedforsecurity=False)
    for event in events:
        digest.update(event.etag.encode())
    return f'"{digest.hexdigest()}"'


# ============================================================================
# PROPERTY SETS
# ============================================================================


def root_properties(principal_href: str, display_name: str) -> list[ET.Element]:
    return [
        href_property("D:current-user-principal", principal_href),
        element("D:resourcetype", None, element("D:collection")),
        element("D:displayname", display_name),
    ]


def principal_properties(principal_href: str, home_href: str, display_name: str) -> list[ET.Element]:
    return [
        element("D:resourcetype", None, element("D:principal")),
        element("D:displayname", display_name),
        href_property("D:current-user-principal", principal_href),
        href_property("C:calendar-home-set", home_href),
    ]


def home_properties(display_name: str) -> list[ET.Element]:
    return [
        element("D:resourcetype", None, element("D:collection")),
        element("D:displayname", display_name),
    ]


def collection_properties(settings: CalendarSettings, ctag: str) -> list[ET.Element]:
    return [
        element("D:resourcetype", None, element("D:collection"), element("C:calendar")),
        element("D:displayname", settings.name),
        element("C:calendar-description", settings.description),
        element(
            "C:supported-calendar-component-set", None, element("C:comp", name="VEVENT")
        ),
        element("C:calendar-timezone", settings.timezone),
        element("CS:getctag", ctag),
        element("D:getetag", ctag),
    ]


def event_properties(
    event: CalendarEvent, content_length: int, calendar_data: Optional[str] = None
) -> list[ET.Element]:
    props = [
        element("D:getetag", event.etag),
        element("D:getlastmodified", format_http_date(event.last_modified)),
        element("D:getcontenttype", ICAL_CONTENT_TYPE),
        element("D:getcontentlength", str(content_length)),
    ]
    if calendar_data is not None:
        props.append(element("C:calendar-data", calendar_data))
    return props


# ============================================================================
# MULTISTATUS
# ============================================================================


class MultiStatus:
    """One D:response per resource, in insertion order"""

    def __init__(self):
        self.root = ET.Element("D:multistatus", dict(NAMESPACE_DECLARATIONS))

    def __len__(self) -> int:
        return len(self.root)

    def add_response(self, href: str, props: list[ET.Element], status: str = STATUS_OK):
        response = ET.SubElement(self.root, "D:response")
        ET.SubElement(response, "D:href").text = href
        propstat = ET.SubElement(response, "D:propstat")
        prop = ET.SubElement(propstat, "D:prop")
        prop.extend(props)
        ET.SubElement(propstat, "D:status").text = status

    def add_missing(self, href: str, status: str = STATUS_NOT_FOUND):
        response = ET.SubElement(self.root, "D:response")
        ET.SubElement(response, "D:href").text = href
        ET.SubElement(response, "D:status").text = status

    def to_bytes(self) -> bytes:
        return ET.tostring(self.root, encoding="utf-8", xml_declaration=True)


def empty_multistatus() -> bytes:
    return MultiStatus().to_bytes()


# ============================================================================
# REPORT BODIES
# ============================================================================


class ReportQuery(BaseModel):
    """What a REPORT request asks for"""

    kind: str
    hrefs: list[str] = Field(default_factory=list)
    time_range_start: Optional[datetime] = None
    time_range_end: Optional[datetime] = None


def parse_report(body: bytes) -> ReportQuery:
    """
    Parse a REPORT body.

    Only the report kind, multiget hrefs and the first CALDAV:time-range are
    extracted; other filters are ignored.
    """
    if not body or not body.strip():
        raise CalendarValidationError("REPORT request body is required")
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise CalendarValidationError(f"Malformed XML body: {e}") from e

    if not root.tag.startswith(f"{{{CALDAV_NS}}}"):
        return ReportQuery(kind=root.tag)
    kind = root.tag[len(CALDAV_NS) + 2 :]

    hrefs = [el.text.strip() for el in root.iter(f"{{{DAV_NS}}}href") if el.text and el.text.strip()]

    start = end = None
    time_range = root.find(f".//{{{CALDAV_NS}}}time-range")
    if time_range is not None:
        if time_range.get("start"):
            start = parse_instant(time_range.get("start"))
        if time_range.get("end"):
            end = parse_instant(time_range.get("end"))
        if start and end and end <= start:
            raise CalendarValidationError("time-range end must be after start")

    return ReportQuery(kind=kind, hrefs=hrefs, time_range_start=start, time_range_end=end)
