"""End-to-end CalDAV tests through the colocated FastAPI app."""

import xml.etree.ElementTree as ET

import pytest

NS = {"D": "DAV:", "C": "urn:ietf:params:xml:ns:caldav", "CS": "http://calendarserver.org/ns/"}
COLLECTION = "/caldav/calendars/scope/"

APPOINTMENT_PAYLOAD = (
    "BEGIN:VCALENDAR\r\n"
    "BEGIN:VEVENT\r\n"
    "UID:appointment-a1\r\n"
    "DTSTART:20250110T090000Z\r\n"
    "DTEND:20250110T100000Z\r\n"
    "SUMMARY:Termin\r\n"
    "CATEGORIES:APPOINTMENT\r\n"
    "END:VEVENT\r\n"
    "END:VCALENDAR\r\n"
)

SLOT_PAYLOAD = (
    "BEGIN:VCALENDAR\r\n"
    "BEGIN:VEVENT\r\n"
    "UID:6F1C-CLIENT-UID\r\n"
    "DTSTART:20250120T090000Z\r\n"
    "DTEND:20250120T100000Z\r\n"
    "SUMMARY:Fortbildung\r\n"
    "END:VEVENT\r\n"
    "END:VCALENDAR\r\n"
)


def hrefs(response):
    root = ET.fromstring(response.content)
    return [node.text for node in root.findall("D:response/D:href", NS)]


def event_hrefs(response):
    return [href for href in hrefs(response) if href.endswith(".ics")]


class TestDiscovery:
    def test_options_needs_no_credentials(self, client):
        response = client.options(COLLECTION)

        assert response.status_code == 200
        assert response.headers["DAV"] == "1, calendar-access"
        assert "REPORT" in response.headers["Allow"]

    def test_root_points_to_principal(self, client, full_token):
        response = client.request(
            "PROPFIND", "/caldav/", auth=("user", full_token), headers={"Depth": "0"}
        )

        assert response.status_code == 207
        root = ET.fromstring(response.content)
        principal = root.find("D:response/D:propstat/D:prop/D:current-user-principal/D:href", NS)
        assert principal.text == "/caldav/principals/user/"

    def test_principal_points_to_home(self, client, full_token):
        response = client.request(
            "PROPFIND", "/caldav/principals/user/", auth=("user", full_token), headers={"Depth": "0"}
        )

        root = ET.fromstring(response.content)
        home = root.find("D:response/D:propstat/D:prop/C:calendar-home-set/D:href", NS)
        assert home.text == "/caldav/calendars/"
        assert root.find("D:response/D:propstat/D:prop/D:displayname", NS).text == "Full"

    def test_home_lists_token_collection(self, client, full_token):
        response = client.request("PROPFIND", "/caldav/calendars/", auth=("user", full_token))

        listed = hrefs(response)
        assert listed[0] == "/caldav/calendars/"
        assert len(listed) == 2
        assert listed[1].startswith("/caldav/calendars/") and listed[1].endswith("/")

    def test_well_known_redirects(self, client):
        response = client.get("/.well-known/caldav", follow_redirects=False)

        assert response.status_code == 301
        assert response.headers["location"] == "/caldav/"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestPropfind:
    def test_lists_collection_members(self, client, seeded, full_token):
        response = client.request("PROPFIND", COLLECTION, auth=("user", full_token), headers={"Depth": "1"})

        assert response.status_code == 207
        assert response.headers["content-type"].startswith("application/xml")
        listed = hrefs(response)
        assert len(listed) == 3
        assert listed[0].endswith("/") and not listed[0].endswith(".ics")
        members = event_hrefs(response)
        assert members == listed[1:]
        assert members[0].endswith("/appointment-a1.ics")
        assert members[1].endswith("/busy-b1.ics")

    def test_collection_properties(self, client, seeded, full_token):
        response = client.request("PROPFIND", COLLECTION, auth=("user", full_token), headers={"Depth": "0"})

        root = ET.fromstring(response.content)
        prop = root.find("D:response/D:propstat/D:prop", NS)
        assert prop.find("D:resourcetype/C:calendar", NS) is not None
        assert prop.find("D:displayname", NS).text == "CBRC Termine"
        assert prop.find("C:calendar-timezone", NS).text == "Europe/Vienna"
        assert prop.find("C:supported-calendar-component-set/C:comp", NS).get("name") == "VEVENT"
        assert prop.find("CS:getctag", NS).text.startswith('"')
        assert event_hrefs(response) == []

    def test_content_length_matches_get(self, client, seeded, full_token):
        listing = client.request("PROPFIND", COLLECTION, auth=("user", full_token))
        root = ET.fromstring(listing.content)
        busy = next(
            node
            for node in root.findall("D:response", NS)
            if node.find("D:href", NS).text.endswith("/busy-b1.ics")
        )
        length = busy.find("D:propstat/D:prop/D:getcontentlength", NS).text
        etag = busy.find("D:propstat/D:prop/D:getetag", NS).text

        resource = client.get(COLLECTION + "busy-b1.ics", auth=("user", full_token))

        assert int(length) == len(resource.content)
        assert resource.headers["etag"] == etag

    def test_scope_isolation(self, client, seeded, appointments_token, busy_token):
        appointments = client.request("PROPFIND", COLLECTION, auth=("user", appointments_token))
        busy = client.request("PROPFIND", COLLECTION, auth=("user", busy_token))

        assert [href.rsplit("/", 1)[-1] for href in event_hrefs(appointments)] == ["appointment-a1.ics"]
        assert [href.rsplit("/", 1)[-1] for href in event_hrefs(busy)] == ["busy-b1.ics"]

    def test_unauthenticated_gets_xml_challenge(self, client, seeded):
        response = client.request("PROPFIND", COLLECTION)

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == 'Basic realm="Calendar"'
        assert ET.fromstring(response.content).tag == "{DAV:}multistatus"

    def test_expired_token_rejected(self, client, seeded, expired_token):
        response = client.request("PROPFIND", COLLECTION, auth=("user", expired_token))

        assert response.status_code == 401

    def test_query_token_accepted(self, client, seeded, full_token):
        response = client.request("PROPFIND", COLLECTION, params={"token": full_token})

        assert response.status_code == 207

    def test_unknown_path(self, client, full_token):
        response = client.request("PROPFIND", "/caldav/elsewhere/", auth=("user", full_token))

        assert response.status_code == 404
        assert ET.fromstring(response.content).tag == "{DAV:}multistatus"


class TestReport:
    def test_calendar_query_filters_by_time_range(self, client, seeded, full_token):
        body = """<?xml version="1.0"?>
        <C:calendar-query xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
          <D:prop><D:getetag/><C:calendar-data/></D:prop>
          <C:filter>
            <C:comp-filter name="VCALENDAR">
              <C:comp-filter name="VEVENT">
                <C:time-range start="20250110T120000Z" end="20250110T180000Z"/>
              </C:comp-filter>
            </C:comp-filter>
          </C:filter>
        </C:calendar-query>"""

        response = client.request("REPORT", COLLECTION, content=body, auth=("user", full_token))

        assert response.status_code == 207
        members = event_hrefs(response)
        assert len(members) == 1
        assert members[0].endswith("/busy-b1.ics")
        data = ET.fromstring(response.content).find(
            "D:response/D:propstat/D:prop/C:calendar-data", NS
        )
        assert "SUMMARY:BESETZT: Lunch" in data.text

    def test_multiget_reports_missing_hrefs(self, client, seeded, busy_token):
        body = """<C:calendar-multiget xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
          <D:prop><C:calendar-data/></D:prop>
          <D:href>/caldav/calendars/scope/busy-b1.ics</D:href>
          <D:href>/caldav/calendars/scope/appointment-a1.ics</D:href>
        </C:calendar-multiget>"""

        response = client.request("REPORT", COLLECTION, content=body, auth=("user", busy_token))

        root = ET.fromstring(response.content)
        found, missing = root.findall("D:response", NS)
        assert found.find("D:propstat/D:status", NS).text == "HTTP/1.1 200 OK"
        assert missing.find("D:href", NS).text == "/caldav/calendars/scope/appointment-a1.ics"
        assert missing.find("D:status", NS).text == "HTTP/1.1 404 Not Found"

    def test_unsupported_report(self, client, full_token):
        response = client.request(
            "REPORT",
            COLLECTION,
            content='<D:sync-collection xmlns:D="DAV:"/>',
            auth=("user", full_token),
        )

        assert response.status_code == 501

    def test_malformed_report(self, client, full_token):
        response = client.request("REPORT", COLLECTION, content="<oops", auth=("user", full_token))

        assert response.status_code == 400


class TestGet:
    def test_busy_resource(self, client, seeded, full_token):
        response = client.get(COLLECTION + "busy-b1.ics", auth=("user", full_token))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/calendar")
        assert response.headers["last-modified"] == "Wed, 01 Jan 2025 08:00:00 GMT"
        body = response.text
        assert "CATEGORIES:BUSY" in body
        assert "TRANSP:OPAQUE" in body
        assert "SUMMARY:BESETZT: Lunch" in body

    def test_collection_as_calendar(self, client, seeded, full_token):
        response = client.get(COLLECTION, auth=("user", full_token))

        assert response.status_code == 200
        assert response.text.count("BEGIN:VEVENT") == 2
        assert response.headers["etag"].startswith('"')

    def test_out_of_scope_resource_not_found(self, client, seeded, appointments_token):
        response = client.get(COLLECTION + "busy-b1.ics", auth=("user", appointments_token))

        assert response.status_code == 404

    def test_head_matches_get(self, client, seeded, full_token):
        get = client.get(COLLECTION + "busy-b1.ics", auth=("user", full_token))
        head = client.head(COLLECTION + "busy-b1.ics", auth=("user", full_token))

        assert head.status_code == 200
        assert head.headers["etag"] == get.headers["etag"]
        assert head.headers["content-length"] == str(len(get.content))

    def test_security_headers(self, client, seeded, full_token):
        response = client.get(COLLECTION + "busy-b1.ics", auth=("user", full_token))

        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["referrer-policy"] == "no-referrer"
        assert response.headers["cache-control"] == "no-cache"


class TestWrites:
    def test_put_appointment_rejected(self, client, seeded, full_token):
        response = client.put(
            COLLECTION + "appointment-a1.ics", content=APPOINTMENT_PAYLOAD, auth=("user", full_token)
        )

        assert response.status_code == 403
        assert response.text == "Appointments are read-only via CalDAV"
        unchanged = client.get(COLLECTION + "appointment-a1.ics", auth=("user", full_token))
        assert "SUMMARY:Termin: Anna Muster - Haarschnitt" in unchanged.text

    def test_put_keeps_client_name_and_uid(self, client, full_token):
        response = client.put(
            COLLECTION + "6F1C-CLIENT-UID.ics", content=SLOT_PAYLOAD, auth=("user", full_token)
        )

        assert response.status_code == 201
        assert response.headers["etag"].startswith('"')
        listing = client.request("PROPFIND", COLLECTION, auth=("user", full_token), headers={"Depth": "1"})
        members = event_hrefs(listing)
        assert len(members) == 1
        assert members[0].endswith("/6F1C-CLIENT-UID.ics")
        created = client.get(members[0], auth=("user", full_token))
        assert created.status_code == 200
        assert created.headers["etag"] == response.headers["etag"]
        assert "UID:6F1C-CLIENT-UID\r\n" in created.text
        assert "SUMMARY:BESETZT: Fortbildung" in created.text

    def test_put_again_updates_same_resource(self, client, full_token):
        name = COLLECTION + "6F1C-CLIENT-UID.ics"
        client.put(name, content=SLOT_PAYLOAD, auth=("user", full_token))

        response = client.put(
            name, content=SLOT_PAYLOAD.replace("Fortbildung", "Urlaub"), auth=("user", full_token)
        )

        assert response.status_code == 204
        listing = client.request("PROPFIND", COLLECTION, auth=("user", full_token), headers={"Depth": "1"})
        assert len(event_hrefs(listing)) == 1
        assert "SUMMARY:BESETZT: Urlaub" in client.get(name, auth=("user", full_token)).text

    def test_put_without_busy_scope(self, client, appointments_token):
        response = client.put(
            COLLECTION + "busy-new.ics", content=SLOT_PAYLOAD, auth=("user", appointments_token)
        )

        assert response.status_code == 403

    def test_put_invalid_payload(self, client, full_token):
        response = client.put(COLLECTION + "busy-new.ics", content="garbage", auth=("user", full_token))

        assert response.status_code == 400

    def test_delete_busy_slot(self, client, seeded, full_token):
        response = client.delete(COLLECTION + "busy-b1.ics", auth=("user", full_token))

        assert response.status_code == 204
        assert client.get(COLLECTION + "busy-b1.ics", auth=("user", full_token)).status_code == 404

    def test_delete_appointment_rejected(self, client, seeded, full_token):
        response = client.delete(COLLECTION + "appointment-a1.ics", auth=("user", full_token))

        assert response.status_code == 403
        assert client.get(COLLECTION + "appointment-a1.ics", auth=("user", full_token)).status_code == 200

    @pytest.mark.parametrize("method", ["PROPPATCH", "MKCOL", "MKCALENDAR", "MOVE"])
    def test_unsupported_methods(self, client, full_token, method):
        response = client.request(method, COLLECTION, auth=("user", full_token))

        assert response.status_code == 405
        assert "PROPFIND" in response.headers["allow"]

    def test_unsupported_method_still_requires_auth(self, client):
        assert client.request("PROPPATCH", COLLECTION).status_code == 401
