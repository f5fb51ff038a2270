"""Subscription feed - the whole token-scoped calendar as one .ics document"""

import logging
from collections.abc import Mapping
from datetime import date
from typing import Optional

from ... import config
from ...exceptions import AuthenticationError, CalendarValidationError, GatewayError
from .aggregator import CalendarAggregator
from .auth import TokenAuthenticator
from .dispatcher import TEXT_CONTENT_TYPE, DavResponse
from .ical import CalendarMetadata, ICalCodec
from .repository import SchedulingStore
from .schemas import DateRange
from .settings import SettingsProvider, resolve_settings
from .webdav import ICAL_CONTENT_TYPE, collection_etag

logger = logging.getLogger(__name__)

FEED_FILENAME = "calendar.ics"


def parse_date_param(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise CalendarValidationError(f"Invalid {name} date, expected YYYY-MM-DD") from e


class CalendarFeed:
    def __init__(
        self,
        store: SchedulingStore,
        settings_provider: Optional[SettingsProvider] = None,
        codec: Optional[ICalCodec] = None,
        realm: str = config.CALENDAR_AUTH_REALM,
    ):
        self.authenticator = TokenAuthenticator(store)
        self.aggregator = CalendarAggregator(store)
        self.codec = codec or ICalCodec(config.CALENDAR_PRODID)
        self.settings_provider = settings_provider
        self.realm = realm

    def render(self, headers: Mapping[str, str], query_params: Mapping[str, str]) -> DavResponse:
        """
        Render the feed for ``?token=...&start=YYYY-MM-DD&end=YYYY-MM-DD``.

        An empty token is refused before the store is consulted.
        """
        try:
            identity = self.authenticator.authenticate(headers, query_params)
            date_range = DateRange(
                start=parse_date_param(query_params.get("start"), "start"),
                end=parse_date_param(query_params.get("end"), "end"),
            )
            settings = resolve_settings(self.settings_provider)
            events = self.aggregator.list(identity.permissions, date_range, settings=settings)
            metadata = CalendarMetadata.from_settings(
                settings, self.codec.prodid, relcalid=identity.token_id
            )
            body = self.codec.encode_calendar(events, metadata)
        except GatewayError as e:
            response_headers = {}
            if isinstance(e, AuthenticationError):
                response_headers["WWW-Authenticate"] = f'Basic realm="{self.realm}"'
            elif e.status_code >= 500:
                logger.error(f"❌ Calendar feed generation failed: {e.detail}")
            return DavResponse(
                status=e.status_code,
                body=e.detail.encode("utf-8"),
                headers=response_headers,
                media_type=TEXT_CONTENT_TYPE,
            )

        logger.info(f"📅 Calendar feed served to token {identity.token_id} ({len(events)} events)")
        return DavResponse(
            status=200,
            body=body.encode("utf-8"),
            headers={
                "Content-Disposition": f'inline; filename="{FEED_FILENAME}"',
                "Cache-Control": f"public, max-age={settings.refresh_interval}",
                "ETag": collection_etag(events),
            },
            media_type=ICAL_CONTENT_TYPE,
        )
