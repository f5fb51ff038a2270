"""
Response hardening for the calendar gateway

Every response except the excluded paths gets:
- X-Frame-Options / frame-ancestors: calendar documents are never framed
- nosniff, so .ics and XML bodies are never reinterpreted by browsers
- Referrer-Policy no-referrer: tokens travel in query strings
- Strict-Transport-Security in production
- Cache-Control no-store, unless the handler already chose a caching policy
"""

import logging
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .config import ENVIRONMENT

logger = logging.getLogger(__name__)

IS_PRODUCTION = ENVIRONMENT == "production"

# Responses are XML, iCalendar or JSON; nothing is ever rendered as a page
CSP_POLICY = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"
DEFAULT_CACHE_CONTROL = "no-store"


def get_security_headers_dict(production: bool = IS_PRODUCTION) -> dict[str, str]:
    headers = {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "no-referrer",
        "Content-Security-Policy": CSP_POLICY,
        "X-Permitted-Cross-Domain-Policies": "none",
    }
    if production:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Feed and CalDAV handlers set their own Cache-Control (public max-age for
    subscriptions, no-cache for DAV resources), so it is only filled in when
    missing.
    """

    def __init__(self, app, exclude_paths: Optional[list[str]] = None):
        super().__init__(app)
        self.exclude_paths = tuple(exclude_paths or ())
        self.headers = get_security_headers_dict()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        if request.url.path.startswith(self.exclude_paths):
            return response

        response.headers.update(self.headers)
        response.headers.setdefault("Cache-Control", DEFAULT_CACHE_CONTROL)
        return response
