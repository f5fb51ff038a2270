"""Token Authenticator - calendar token validation for feed and CalDAV requests"""

import base64
import binascii
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Callable, Optional

from ...exceptions import AuthenticationError
from ...security_utils import mask_sensitive_data
from ...utils.datetime_utils import utcnow
from .repository import SchedulingStore
from .schemas import VALID_PERMISSIONS, TokenIdentity

logger = logging.getLogger(__name__)

INVALID_TOKEN_DETAIL = "Invalid calendar token"


def extract_credential(
    headers: Mapping[str, str], query_params: Mapping[str, str]
) -> Optional[str]:
    """
    Pull the token secret from the request.

    The password of an ``Authorization: Basic`` header wins; the user part is
    ignored. Otherwise the ``token`` query parameter is used.
    """
    auth_header = headers.get("authorization") or headers.get("Authorization")
    if auth_header and auth_header[:6].lower() == "basic ":
        try:
            decoded = base64.b64decode(auth_header[6:].strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            logger.debug("Ignoring malformed Basic credentials")
        else:
            _user, separator, password = decoded.partition(":")
            if separator and password:
                return password

    token = query_params.get("token")
    return token or None


class TokenAuthenticator:
    """
    Validates calendar tokens against the Scheduling Store.

    Unknown, inactive and expired secrets fail identically so callers cannot
    tell which condition applied.
    """

    def __init__(self, store: SchedulingStore, now: Callable[[], datetime] = utcnow):
        self.store = store
        self.now = now

    def validate(self, credential: Optional[str]) -> TokenIdentity:
        if not credential:
            raise AuthenticationError("Authentication required")

        token = self.store.validate_token(credential)
        if token is None:
            logger.debug(f"Unknown calendar token {mask_sensitive_data(credential)}")
            raise AuthenticationError(INVALID_TOKEN_DETAIL)
        if not token.is_active:
            logger.debug(f"Inactive calendar token {token.id}")
            raise AuthenticationError(INVALID_TOKEN_DETAIL)
        if token.expires_at is not None and token.expires_at <= self.now():
            logger.debug(f"Expired calendar token {token.id}")
            raise AuthenticationError(INVALID_TOKEN_DETAIL)

        try:
            self.store.touch_token_last_used(token.id)
        except Exception as e:
            logger.warning(f"⚠️ Could not stamp last use of token {token.id}: {e}")

        return TokenIdentity(
            token_id=token.id,
            name=token.name,
            permissions=frozenset(p for p in token.permissions if p in VALID_PERMISSIONS),
        )

    def authenticate(
        self, headers: Mapping[str, str], query_params: Mapping[str, str]
    ) -> TokenIdentity:
        """Extract and validate in one step"""
        try:
            return self.validate(extract_credential(headers, query_params))
        except AuthenticationError:
            logger.warning("🔒 Calendar authentication failed")
            raise
