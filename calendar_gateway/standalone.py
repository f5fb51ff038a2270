"""
Standalone CalDAV deployment.

Serves the same dispatcher as the colocated app, with the CalDAV tree at the
root and X-HTTP-Method-Override support. Run with:

    uvicorn calendar_gateway.standalone:app
"""

import logging
from typing import Optional

from fastapi import FastAPI

from .database import SessionLocal
from .domain.calendar.repository import SchedulingStore, SqlSchedulingStore
from .domain.calendar.router import build_caldav_router, feed_router
from .domain.calendar.settings import SettingsProvider, SqlSettingsProvider
from .main import configure_app, lifespan

logger = logging.getLogger(__name__)


def create_standalone_app(
    store: Optional[SchedulingStore] = None,
    settings_provider: Optional[SettingsProvider] = None,
) -> FastAPI:
    app = FastAPI(title="Calendar Gateway (CalDAV)", version="1.0.0", lifespan=lifespan)
    app.state.owns_database = store is None
    if store is None:
        store = SqlSchedulingStore(SessionLocal)
        settings_provider = settings_provider or SqlSettingsProvider(SessionLocal)

    configure_app(app, store, settings_provider, base_path="")

    # Feed first: the CalDAV tree claims every other path
    app.include_router(feed_router)
    app.include_router(build_caldav_router("", allow_method_override=True))
    logger.info("Standalone CalDAV server configured")
    return app


app = create_standalone_app()
