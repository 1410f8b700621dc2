"""TapLink API — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map TapLinkError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database initialized on startup via lifespan context manager

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Web fallback router registered last: its /link, /run, /emergency paths are
      the universal links and must not shadow /api/v1/*
    - run() serves the app with uvicorn on api_host/api_port; installed as the
      taplink-api console script
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taplink.api.error_handlers import register_error_handlers
from taplink.api.routes import health, links, web_fallback
from taplink.config import get_settings
from taplink.infrastructure.database import close_db, init_db
from taplink.infrastructure.observability import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    logger.info("TapLink API started")
    yield
    logger.info("TapLink API shutting down")
    await close_db()


app = FastAPI(
    title="TapLink API", version="1.0.0", lifespan=lifespan,
)

# CORS origins come from settings
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(links.router)
app.include_router(web_fallback.router)

register_error_handlers(app)


def run() -> None:
    """Serve the API with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "taplink.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,  # logging is set up by the lifespan
    )


if __name__ == "__main__":
    run()
