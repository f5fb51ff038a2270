"""
Mutation Gate
Write policy for CalDAV PUT/DELETE: appointments are read-only, busy slots
are read-write.
"""

import logging
from typing import Optional

from pydantic import BaseModel

from ...exceptions import AuthorizationError, CalendarValidationError, NotFoundError
from .aggregator import (
    BUSY_DEFAULT_TITLE,
    BUSY_PLACEHOLDER_DESCRIPTION,
    BUSY_SUMMARY_PREFIX,
    BUSY_UID_PREFIX,
    busy_slot_to_event,
    resolve_resource_name,
)
from .ical import ICalCodec
from .repository import SchedulingStore
from .schemas import (
    CATEGORY_APPOINTMENT,
    PERMISSION_BUSY_SLOTS,
    BusySlotFields,
    CalendarSettings,
    TokenIdentity,
)
from .settings import default_settings

logger = logging.getLogger(__name__)

READ_ONLY_DETAIL = "Appointments are read-only via CalDAV"
SCOPE_DETAIL = "Token does not permit busy slot changes"


class MutationResult(BaseModel):
    status: int
    etag: Optional[str] = None


class MutationGate:
    def __init__(self, store: SchedulingStore, codec: ICalCodec):
        self.store = store
        self.codec = codec

    def _check_target(self, identity: TokenIdentity, resource_name: str) -> str:
        """Return the busy slot id a write may touch, or raise 403"""
        category, source_id = resolve_resource_name(resource_name)
        if category == CATEGORY_APPOINTMENT:
            logger.warning(f"🚫 Rejected write to appointment {source_id} by token {identity.token_id}")
            raise AuthorizationError(READ_ONLY_DETAIL)
        if PERMISSION_BUSY_SLOTS not in identity.permissions:
            logger.warning(f"🚫 Token {identity.token_id} lacks busy_slots permission")
            raise AuthorizationError(SCOPE_DETAIL)
        if not source_id:
            raise NotFoundError("Event not found")
        return source_id

    def put(
        self,
        identity: TokenIdentity,
        resource_name: str,
        body: bytes,
        settings: Optional[CalendarSettings] = None,
    ) -> MutationResult:
        """
        Create or replace a busy slot from an iCalendar payload.

        A payload tagged APPOINTMENT is refused even when aimed at a busy slot
        name. Payloads with no or unknown CATEGORIES are stored as busy slots.
        """
        slot_id = self._check_target(identity, resource_name)

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CalendarValidationError("Request body must be UTF-8 encoded") from e

        decoded = self.codec.decode_event(text)
        if CATEGORY_APPOINTMENT in decoded.categories:
            logger.warning(f"🚫 Rejected APPOINTMENT payload for {resource_name}")
            raise AuthorizationError(READ_ONLY_DETAIL)

        if decoded.dtstart is None or decoded.dtend is None:
            raise CalendarValidationError("DTSTART and DTEND are required")
        if decoded.dtend <= decoded.dtstart:
            raise CalendarValidationError("DTEND must be after DTSTART")

        title = (decoded.summary or "").strip()
        if title.startswith(BUSY_SUMMARY_PREFIX.strip()):
            title = title[len(BUSY_SUMMARY_PREFIX.strip()) :].strip()
        description = decoded.description
        if description is not None and description.strip() in ("", BUSY_PLACEHOLDER_DESCRIPTION):
            description = None

        # Resources named by the client are served back under that name and UID
        client_uid = None
        if not resource_name.startswith(BUSY_UID_PREFIX):
            client_uid = decoded.uid or slot_id

        record, created = self.store.upsert_busy_slot(
            slot_id,
            BusySlotFields(
                start_datetime=decoded.dtstart,
                end_datetime=decoded.dtend,
                title=title or BUSY_DEFAULT_TITLE,
                description=description,
                client_uid=client_uid,
            ),
        )
        event = busy_slot_to_event(record, settings or default_settings())
        return MutationResult(status=201 if created else 204, etag=event.etag)

    def delete(self, identity: TokenIdentity, resource_name: str) -> MutationResult:
        slot_id = self._check_target(identity, resource_name)
        if not self.store.delete_busy_slot(slot_id):
            raise NotFoundError("Event not found")
        logger.info(f"🗑️ Busy slot deleted via CalDAV: {slot_id}")
        return MutationResult(status=204)
