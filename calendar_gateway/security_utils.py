"""
Security helpers for calendar tokens and the admin API
"""

import hashlib
import secrets
from typing import Optional

TOKEN_BYTES = 32


def generate_secure_token(length: int = TOKEN_BYTES) -> str:
    """URL-safe secret for a calendar subscription; safe to paste into a feed URL"""
    return secrets.token_urlsafe(length)


def hash_token(token: str) -> str:
    """
    Digest a calendar token secret for storage and lookup.

    Only the digest is persisted; the secret itself is shown once at creation.
    """
    return hashlib.sha256(token.encode()).hexdigest()


def constant_time_compare(provided: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare a presented key against the configured one without leaking timing.

    A missing value on either side never matches.
    """
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
    """Keep the last ``visible_chars`` of a secret for log correlation"""
    hidden = max(len(data) - visible_chars, 0)
    if hidden == 0:
        return "*" * len(data)
    return "*" * hidden + data[-visible_chars:]
