"""Calendar admin service - token management and calendar settings"""

import logging
from datetime import timedelta
from typing import Callable, Optional

from fastapi import HTTPException

from ...exceptions import GatewayError
from ...utils.datetime_utils import utcnow
from .repository import SchedulingStore
from .schemas import (
    VALID_PERMISSIONS,
    CalendarSettings,
    CalendarSettingsUpdate,
    TokenCreate,
    TokenCreatedResponse,
    TokenFields,
    TokenRecord,
    TokenResponse,
)
from .settings import SettingsProvider, resolve_settings

logger = logging.getLogger(__name__)


def to_token_response(token: TokenRecord) -> TokenResponse:
    return TokenResponse(
        id=token.id,
        name=token.name,
        description=token.description,
        permissions=token.permissions,
        expires_at=token.expires_at,
        last_used_at=token.last_used_at,
        is_active=token.is_active,
        created_at=token.created_at,
    )


class CalendarAdminService:
    """Service layer for the admin endpoints"""

    def __init__(
        self,
        store: SchedulingStore,
        settings_provider: Optional[SettingsProvider] = None,
        now: Callable = utcnow,
    ):
        self.store = store
        self.settings_provider = settings_provider
        self.now = now

    # ============================================================================
    # TOKENS
    # ============================================================================

    def list_tokens(self) -> list[TokenResponse]:
        try:
            tokens = self.store.list_tokens()
        except GatewayError as e:
            raise HTTPException(status_code=e.status_code, detail=e.detail) from e
        return [to_token_response(token) for token in tokens]

    def create_token(self, data: TokenCreate) -> TokenCreatedResponse:
        """Create a token; the secret is only ever returned here"""
        expires_at = None
        if data.expires_days:
            expires_at = self.now() + timedelta(days=data.expires_days)

        fields = TokenFields(
            name=data.name,
            description=data.description,
            permissions=data.permissions or list(VALID_PERMISSIONS),
            expires_at=expires_at,
        )
        try:
            token, secret = self.store.create_token(fields)
        except GatewayError as e:
            raise HTTPException(status_code=e.status_code, detail=e.detail) from e

        logger.info(f"🔑 Calendar token issued: {token.id} permissions={token.permissions}")
        return TokenCreatedResponse(**to_token_response(token).model_dump(), token=secret)

    def set_token_active(self, token_id: str, is_active: bool) -> TokenResponse:
        try:
            token = self.store.set_token_active(token_id, is_active)
        except GatewayError as e:
            raise HTTPException(status_code=e.status_code, detail=e.detail) from e
        if not token:
            raise HTTPException(status_code=404, detail="Token not found")

        logger.info(f"🔑 Calendar token {token_id} {'activated' if is_active else 'deactivated'}")
        return to_token_response(token)

    def revoke_token(self, token_id: str) -> None:
        try:
            deleted = self.store.delete_token(token_id)
        except GatewayError as e:
            raise HTTPException(status_code=e.status_code, detail=e.detail) from e
        if not deleted:
            raise HTTPException(status_code=404, detail="Token not found")
        logger.info(f"🗑️ Calendar token revoked: {token_id}")

    # ============================================================================
    # SETTINGS
    # ============================================================================

    def get_settings(self) -> CalendarSettings:
        return resolve_settings(self.settings_provider)

    def update_settings(self, update: CalendarSettingsUpdate) -> CalendarSettings:
        updater = getattr(self.settings_provider, "update_settings", None)
        if updater is None:
            raise HTTPException(status_code=501, detail="Calendar settings are read-only")
        try:
            return updater(update)
        except Exception as e:
            logger.error(f"❌ Failed to update calendar settings: {e}")
            raise HTTPException(status_code=500, detail="Failed to update calendar settings") from e
