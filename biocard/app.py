"""
FastAPI application entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from biocard.bootstrap import initialize
from biocard.cleanup import TokenCleanupThread
from biocard.config import get_settings
from biocard.dependencies import close_cache, get_db_client
from biocard.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    db = get_db_client()
    initialize(db, settings)

    cleanup = None
    if settings.token_cleanup_enabled:
        cleanup = TokenCleanupThread(db, settings.token_cleanup_interval_seconds)
        cleanup.start()
    try:
        yield
    finally:
        if cleanup is not None:
            cleanup.stop()
        close_cache()


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    app = FastAPI(title="OpenBioCard Backend", version="0.1.0", lifespan=lifespan)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
