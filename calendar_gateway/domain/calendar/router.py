"""Calendar routers - FastAPI adapters for the feed, CalDAV tree and admin API"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from ... import config
from ...security_utils import constant_time_compare
from .dispatcher import CalDAVDispatcher, DavRequest, DavResponse
from .schemas import (
    CalendarSettings,
    CalendarSettingsUpdate,
    TokenCreate,
    TokenCreatedResponse,
    TokenResponse,
    TokenStatusUpdate,
)
from .service import CalendarAdminService

logger = logging.getLogger(__name__)

# Every method a DAV client may send; the dispatcher decides which are supported
CALDAV_METHODS = [
    "OPTIONS",
    "GET",
    "HEAD",
    "PUT",
    "DELETE",
    "POST",
    "PROPFIND",
    "REPORT",
    "PROPPATCH",
    "MKCOL",
    "MKCALENDAR",
    "COPY",
    "MOVE",
    "LOCK",
    "UNLOCK",
]

admin_security = HTTPBearer(auto_error=False)


# ============================================================================
# TRANSPORT ADAPTER
# ============================================================================


def to_response(dav_response: DavResponse) -> Response:
    return Response(
        content=dav_response.body,
        status_code=dav_response.status,
        headers=dav_response.headers,
        media_type=dav_response.media_type,
    )


async def to_dav_request(request: Request, method: Optional[str] = None) -> DavRequest:
    return DavRequest(
        method=(method or request.method).upper(),
        path=request.url.path,
        headers={key.lower(): value for key, value in request.headers.items()},
        query_params=dict(request.query_params),
        body=await request.body(),
    )


async def relay(request: Request, dispatcher: CalDAVDispatcher, method: Optional[str] = None) -> Response:
    """Hand the request to the shared dispatcher off the event loop"""
    dav_request = await to_dav_request(request, method)
    dav_response = await run_in_threadpool(dispatcher.dispatch, dav_request)
    return to_response(dav_response)


def build_caldav_router(base_path: str, allow_method_override: bool = False) -> APIRouter:
    """
    CalDAV tree mounted at ``base_path`` ("" mounts it at the root).

    With ``allow_method_override`` a POST carrying ``X-HTTP-Method-Override``
    is dispatched as the named method, for proxies that only pass GET/POST.
    """
    router = APIRouter(tags=["CalDAV"])

    async def caldav(request: Request):
        method = None
        if allow_method_override and request.method == "POST":
            method = request.headers.get("x-http-method-override") or None
            if method:
                logger.debug(f"📅 Method override POST -> {method.upper()}")
        return await relay(request, request.app.state.dispatcher, method)

    if base_path:
        router.add_api_route(base_path, caldav, methods=CALDAV_METHODS, include_in_schema=False)
    router.add_api_route(
        f"{base_path}/{{path:path}}", caldav, methods=CALDAV_METHODS, include_in_schema=False
    )
    return router


# ============================================================================
# SUBSCRIPTION FEED
# ============================================================================

feed_router = APIRouter(tags=["Calendar Feed"])


@feed_router.get("/feed.ics")
async def calendar_feed(request: Request):
    """Full token-scoped calendar for subscription clients"""
    feed = request.app.state.feed
    dav_response = await run_in_threadpool(
        feed.render,
        {key.lower(): value for key, value in request.headers.items()},
        dict(request.query_params),
    )
    return to_response(dav_response)


# ============================================================================
# ADMIN API
# ============================================================================


def require_admin_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(admin_security),
) -> None:
    if not config.ADMIN_API_KEY:
        logger.error("❌ ADMIN_API_KEY not configured")
        raise HTTPException(status_code=500, detail="Admin API not configured")
    if not credentials or not constant_time_compare(credentials.credentials, config.ADMIN_API_KEY):
        logger.warning("🔒 Rejected admin request with invalid API key")
        raise HTTPException(
            status_code=401,
            detail="Invalid admin API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_admin_service(request: Request) -> CalendarAdminService:
    """Dependency injection for CalendarAdminService"""
    return CalendarAdminService(request.app.state.store, request.app.state.settings_provider)


tokens_router = APIRouter(
    prefix="/calendar/tokens",
    tags=["Calendar Tokens"],
    dependencies=[Depends(require_admin_key)],
)


@tokens_router.get("", response_model=list[TokenResponse])
async def list_tokens(service: CalendarAdminService = Depends(get_admin_service)):
    """List calendar tokens (secrets are never returned)"""
    return service.list_tokens()


@tokens_router.post("", response_model=TokenCreatedResponse, status_code=201)
async def create_token(
    data: TokenCreate, service: CalendarAdminService = Depends(get_admin_service)
):
    """Generate a new calendar token"""
    return service.create_token(data)


@tokens_router.put("/{token_id}", response_model=TokenResponse)
async def update_token_status(
    token_id: str,
    data: TokenStatusUpdate,
    service: CalendarAdminService = Depends(get_admin_service),
):
    """Activate or deactivate a token"""
    return service.set_token_active(token_id, data.is_active)


@tokens_router.delete("/{token_id}", status_code=204)
async def revoke_token(token_id: str, service: CalendarAdminService = Depends(get_admin_service)):
    service.revoke_token(token_id)
    return Response(status_code=204)


settings_router = APIRouter(
    prefix="/calendar/settings",
    tags=["Calendar Settings"],
    dependencies=[Depends(require_admin_key)],
)


@settings_router.get("", response_model=CalendarSettings)
async def get_calendar_settings(service: CalendarAdminService = Depends(get_admin_service)):
    return service.get_settings()


@settings_router.put("", response_model=CalendarSettings)
async def update_calendar_settings(
    update: CalendarSettingsUpdate, service: CalendarAdminService = Depends(get_admin_service)
):
    """Update calendar metadata; only provided keys change"""
    return service.update_settings(update)
