"""
CalDAV Resource Router
Maps (method, path) onto discovery, listing, retrieval and mutation, and turns
domain errors into HTTP responses. Transport-agnostic: both FastAPI
deployments feed it a DavRequest and relay the DavResponse.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ... import config
from ...exceptions import AuthenticationError, GatewayError, NotFoundError
from ...utils.datetime_utils import format_http_date, utcnow
from .aggregator import CalendarAggregator
from .auth import TokenAuthenticator
from .ical import CalendarMetadata, ICalCodec
from .mutation import MutationGate
from .repository import SchedulingStore
from .schemas import CalendarEvent, CalendarSettings, TokenIdentity
from .settings import SettingsProvider, resolve_settings
from .webdav import (
    ICAL_CONTENT_TYPE,
    REPORT_CALENDAR_MULTIGET,
    REPORT_CALENDAR_QUERY,
    XML_CONTENT_TYPE,
    MultiStatus,
    collection_etag,
    collection_properties,
    empty_multistatus,
    event_properties,
    home_properties,
    parse_report,
    principal_properties,
    root_properties,
)

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ("OPTIONS", "GET", "HEAD", "PUT", "DELETE", "PROPFIND", "REPORT")
ALLOW_HEADER = ", ".join(SUPPORTED_METHODS)
DAV_HEADER = "1, calendar-access"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"

# Path kinds
ROOT = "root"
PRINCIPAL = "principal"
HOME = "home"
COLLECTION = "collection"
EVENT = "event"


@dataclass
class DavRequest:
    """Transport-neutral view of an incoming request. Header names are lowercase."""

    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class DavResponse:
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    media_type: Optional[str] = None


@dataclass
class ResolvedPath:
    kind: str
    resource_name: Optional[str] = None


class CalDAVDispatcher:
    """
    Shared request lifecycle for every CalDAV deployment.

    Built once per application; it keeps references to its collaborators only
    and is safe to call from concurrent worker threads.
    """

    def __init__(
        self,
        store: SchedulingStore,
        settings_provider: Optional[SettingsProvider] = None,
        base_path: str = "",
        codec: Optional[ICalCodec] = None,
        realm: str = config.CALENDAR_AUTH_REALM,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings_provider = settings_provider
        self.base_path = base_path.rstrip("/")
        self.codec = codec or ICalCodec(config.CALENDAR_PRODID)
        self.realm = realm
        self.authenticator = TokenAuthenticator(store, now=now)
        self.aggregator = CalendarAggregator(store)
        self.mutations = MutationGate(store, self.codec)

    # ------------------------------------------------------------------
    # Hrefs
    # ------------------------------------------------------------------

    def root_href(self) -> str:
        return f"{self.base_path}/"

    def principal_href(self) -> str:
        return f"{self.base_path}/principals/user/"

    def home_href(self) -> str:
        return f"{self.base_path}/calendars/"

    def collection_href(self, identity: TokenIdentity) -> str:
        return f"{self.base_path}/calendars/{identity.token_id}/"

    def event_href(self, identity: TokenIdentity, event: CalendarEvent) -> str:
        return self.collection_href(identity) + event.resource_name

    def resolve_path(self, path: str) -> Optional[ResolvedPath]:
        """Classify a request path; None means it is outside the CalDAV tree"""
        if self.base_path:
            if path != self.base_path and not path.startswith(self.base_path + "/"):
                return None
            path = path[len(self.base_path) :]
        segments = [segment for segment in path.split("/") if segment]

        if not segments:
            return ResolvedPath(ROOT)
        if segments == ["principals", "user"]:
            return ResolvedPath(PRINCIPAL)
        if segments[0] != "calendars":
            return None
        if len(segments) == 1:
            return ResolvedPath(HOME)
        if len(segments) == 2:
            return ResolvedPath(COLLECTION)
        if len(segments) == 3 and segments[2].endswith(".ics") and len(segments[2]) > 4:
            return ResolvedPath(EVENT, segments[2])
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def dispatch(self, request: DavRequest) -> DavResponse:
        method = request.method.upper()
        logger.debug(f"📅 CalDAV {method} {request.path}")

        if method == "OPTIONS":
            return DavResponse(status=200, headers={"Allow": ALLOW_HEADER, "DAV": DAV_HEADER})

        try:
            identity = self.authenticator.authenticate(request.headers, request.query_params)
        except GatewayError as e:
            return self.error_response(method, e)

        if method not in SUPPORTED_METHODS:
            logger.warning(f"🚫 Unsupported CalDAV method {method} on {request.path}")
            return DavResponse(
                status=405,
                body=b"Method Not Allowed",
                headers={"Allow": ALLOW_HEADER},
                media_type=TEXT_CONTENT_TYPE,
            )

        try:
            resolved = self.resolve_path(request.path)
            if resolved is None:
                raise NotFoundError("Not found")
            handler = getattr(self, f"handle_{method.lower()}")
            return handler(identity, resolved, request)
        except GatewayError as e:
            if e.status_code >= 500:
                logger.error(f"❌ CalDAV {method} {request.path} failed: {e.detail}")
            return self.error_response(method, e)
        except Exception as e:
            logger.exception(f"❌ Unexpected error handling CalDAV {method} {request.path}: {e}")
            return self.error_response(method, GatewayError())

    def error_response(self, method: str, error: GatewayError) -> DavResponse:
        """
        PROPFIND failures keep a well-formed (empty) multistatus body so strict
        clients can still parse them; every other failure is short plain text.
        """
        headers = {}
        if isinstance(error, AuthenticationError):
            headers["WWW-Authenticate"] = f'Basic realm="{self.realm}"'
        if method == "PROPFIND":
            return DavResponse(
                status=error.status_code,
                body=empty_multistatus(),
                headers=headers,
                media_type=XML_CONTENT_TYPE,
            )
        return DavResponse(
            status=error.status_code,
            body=error.detail.encode("utf-8"),
            headers=headers,
            media_type=TEXT_CONTENT_TYPE,
        )

    def settings(self) -> CalendarSettings:
        return resolve_settings(self.settings_provider)

    # ------------------------------------------------------------------
    # PROPFIND
    # ------------------------------------------------------------------

    def _add_collection(
        self,
        multistatus: MultiStatus,
        identity: TokenIdentity,
        settings: CalendarSettings,
        events: Optional[list[CalendarEvent]] = None,
    ) -> list[CalendarEvent]:
        if events is None:
            events = self.aggregator.list(identity.permissions, settings=settings)
        multistatus.add_response(
            self.collection_href(identity),
            collection_properties(settings, collection_etag(events)),
        )
        return events

    def _event_properties(self, event: CalendarEvent, with_data: bool = False):
        resource = self.codec.encode_resource(event)
        return event_properties(
            event,
            len(resource.encode("utf-8")),
            calendar_data=resource if with_data else None,
        )

    def handle_propfind(
        self, identity: TokenIdentity, resolved: ResolvedPath, request: DavRequest
    ) -> DavResponse:
        depth = request.headers.get("depth", "1").strip().lower()
        enumerate_members = depth != "0"
        settings = self.settings()
        multistatus = MultiStatus()

        if resolved.kind == ROOT:
            multistatus.add_response(
                self.root_href(), root_properties(self.principal_href(), settings.name)
            )
            if enumerate_members:
                self._add_collection(multistatus, identity, settings)
        elif resolved.kind == PRINCIPAL:
            multistatus.add_response(
                self.principal_href(),
                principal_properties(self.principal_href(), self.home_href(), identity.name),
            )
        elif resolved.kind == HOME:
            multistatus.add_response(self.home_href(), home_properties(settings.name))
            if enumerate_members:
                self._add_collection(multistatus, identity, settings)
        elif resolved.kind == COLLECTION:
            events = self._add_collection(multistatus, identity, settings)
            if enumerate_members:
                for event in events:
                    multistatus.add_response(
                        self.event_href(identity, event), self._event_properties(event)
                    )
        else:
            event = self.aggregator.get(identity.permissions, resolved.resource_name, settings)
            multistatus.add_response(self.event_href(identity, event), self._event_properties(event))

        return DavResponse(status=207, body=multistatus.to_bytes(), media_type=XML_CONTENT_TYPE)

    # ------------------------------------------------------------------
    # REPORT
    # ------------------------------------------------------------------

    def handle_report(
        self, identity: TokenIdentity, resolved: ResolvedPath, request: DavRequest
    ) -> DavResponse:
        if resolved.kind != COLLECTION:
            raise NotFoundError("Not found")

        query = parse_report(request.body)
        settings = self.settings()
        multistatus = MultiStatus()

        if query.kind == REPORT_CALENDAR_QUERY:
            events = self.aggregator.list(identity.permissions, settings=settings)
            for event in events:
                if query.time_range_start and event.end <= query.time_range_start:
                    continue
                if query.time_range_end and event.start >= query.time_range_end:
                    continue
                multistatus.add_response(
                    self.event_href(identity, event), self._event_properties(event, with_data=True)
                )
        elif query.kind == REPORT_CALENDAR_MULTIGET:
            for href in query.hrefs:
                resource_name = href.rstrip("/").rsplit("/", 1)[-1]
                try:
                    event = self.aggregator.get(identity.permissions, resource_name, settings)
                except NotFoundError:
                    multistatus.add_missing(href)
                    continue
                multistatus.add_response(href, self._event_properties(event, with_data=True))
        else:
            logger.info(f"📊 Unsupported REPORT {query.kind}")
            return DavResponse(
                status=501, body=b"Report not supported", media_type=TEXT_CONTENT_TYPE
            )

        return DavResponse(status=207, body=multistatus.to_bytes(), media_type=XML_CONTENT_TYPE)

    # ------------------------------------------------------------------
    # GET / HEAD
    # ------------------------------------------------------------------

    def handle_get(
        self, identity: TokenIdentity, resolved: ResolvedPath, request: DavRequest
    ) -> DavResponse:
        settings = self.settings()

        if resolved.kind == COLLECTION:
            events = self.aggregator.list(identity.permissions, settings=settings)
            metadata = CalendarMetadata.from_settings(
                settings, self.codec.prodid, relcalid=identity.token_id
            )
            body = self.codec.encode_calendar(events, metadata).encode("utf-8")
            return DavResponse(
                status=200,
                body=body,
                headers={"ETag": collection_etag(events), "Cache-Control": "no-cache"},
                media_type=ICAL_CONTENT_TYPE,
            )

        if resolved.kind != EVENT:
            raise NotFoundError("Not found")

        event = self.aggregator.get(identity.permissions, resolved.resource_name, settings)
        return DavResponse(
            status=200,
            body=self.codec.encode_resource(event).encode("utf-8"),
            headers={
                "ETag": event.etag,
                "Last-Modified": format_http_date(event.last_modified),
                "Cache-Control": "no-cache",
            },
            media_type=ICAL_CONTENT_TYPE,
        )

    def handle_head(
        self, identity: TokenIdentity, resolved: ResolvedPath, request: DavRequest
    ) -> DavResponse:
        response = self.handle_get(identity, resolved, request)
        response.headers["Content-Length"] = str(len(response.body))
        response.body = b""
        return response

    # ------------------------------------------------------------------
    # PUT / DELETE
    # ------------------------------------------------------------------

    def handle_put(
        self, identity: TokenIdentity, resolved: ResolvedPath, request: DavRequest
    ) -> DavResponse:
        if resolved.kind != EVENT:
            raise NotFoundError("Not found")
        result = self.mutations.put(identity, resolved.resource_name, request.body, self.settings())
        return DavResponse(status=result.status, headers={"ETag": result.etag})

    def handle_delete(
        self, identity: TokenIdentity, resolved: ResolvedPath, request: DavRequest
    ) -> DavResponse:
        if resolved.kind != EVENT:
            raise NotFoundError("Not found")
        result = self.mutations.delete(identity, resolved.resource_name)
        return DavResponse(status=result.status)
