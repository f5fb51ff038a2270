import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from . import config
from .database import Base, SessionLocal, engine
from .domain.calendar.dispatcher import CalDAVDispatcher
from .domain.calendar.feed import CalendarFeed
from .domain.calendar.ical import ICalCodec
from .domain.calendar.repository import SchedulingStore, SqlSchedulingStore
from .domain.calendar.router import (
    CALDAV_METHODS,
    build_caldav_router,
    feed_router,
    settings_router,
    tokens_router,
)
from .domain.calendar.settings import SettingsProvider, SqlSettingsProvider
from .security_headers import SecurityHeadersMiddleware

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Calendar gateway starting up...")
    if app.state.owns_database:
        try:
            Base.metadata.create_all(bind=engine, checkfirst=True)
            logger.info("Database tables created successfully")
        except Exception as e:
            # Ignore "already exists" errors from race conditions between workers
            error_msg = str(e)
            if "already exists" in error_msg or "duplicate key" in error_msg:
                logger.info("Database tables already exist (created by another worker)")
            else:
                logger.error(f"Failed to create database tables: {e}")
    yield
    logger.info("Calendar gateway shutting down...")


def configure_app(
    app: FastAPI,
    store: SchedulingStore,
    settings_provider: Optional[SettingsProvider],
    base_path: str,
) -> None:
    """Wire shared components and middleware; used by both deployments"""
    codec = ICalCodec(config.CALENDAR_PRODID)
    app.state.store = store
    app.state.settings_provider = settings_provider
    app.state.dispatcher = CalDAVDispatcher(
        store, settings_provider, base_path=base_path, codec=codec
    )
    app.state.feed = CalendarFeed(store, settings_provider, codec=codec)

    if config.SECURITY_HEADERS_ENABLED:
        app.add_middleware(
            SecurityHeadersMiddleware, exclude_paths=["/health", "/docs", "/openapi.json"]
        )
        logger.info("Security headers enabled")
    else:
        logger.warning("Security headers DISABLED - only use in development!")

    logger.info(f"CORS allowed origins: {config.ALLOWED_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.ALLOWED_ORIGINS,
        allow_credentials=False,
        allow_methods=CALDAV_METHODS,
        allow_headers=["Authorization", "Content-Type", "Depth", "If-Match", "X-HTTP-Method-Override"],
        expose_headers=["ETag", "Last-Modified", "DAV", "Allow", "WWW-Authenticate"],
    )

    @app.get("/health")
    def health():
        return {"status": "healthy"}


def create_app(
    store: Optional[SchedulingStore] = None,
    settings_provider: Optional[SettingsProvider] = None,
) -> FastAPI:
    """
    Colocated deployment: feed, admin API and the CalDAV tree under
    CALDAV_BASE_PATH.

    Without an explicit store the app runs against the configured database
    and creates its tables on startup.
    """
    app = FastAPI(title="Calendar Gateway", version="1.0.0", lifespan=lifespan)
    app.state.owns_database = store is None
    if store is None:
        store = SqlSchedulingStore(SessionLocal)
        settings_provider = settings_provider or SqlSettingsProvider(SessionLocal)

    configure_app(app, store, settings_provider, config.CALDAV_BASE_PATH)

    @app.api_route("/.well-known/caldav", methods=["GET", "PROPFIND"], include_in_schema=False)
    def well_known_caldav():
        return RedirectResponse(url=f"{config.CALDAV_BASE_PATH}/", status_code=301)

    app.include_router(feed_router)
    app.include_router(tokens_router)
    app.include_router(settings_router)
    app.include_router(build_caldav_router(config.CALDAV_BASE_PATH))
    return app


app = create_app()
