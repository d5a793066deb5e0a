"""Snake Oil API - FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map SnakeOilError -> structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database and change-feed transport initialized on startup via lifespan

Design Decisions:
    - Lifespan over @app.on_event: cleanup of pool and transport in one place
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from snakeoil.api.error_handlers import register_error_handlers
from snakeoil.api.routes import game_stream, games, health
from snakeoil.config import get_settings
from snakeoil.infrastructure import change_feed, database
from snakeoil.infrastructure.change_feed import init_feed
from snakeoil.infrastructure.database import init_db
from snakeoil.infrastructure.observability import setup_logging

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
    init_feed(settings.feed_transport, settings.database_url)
    logger.info(f"Snake Oil API started (feed={settings.feed_transport})")
    yield
    logger.info("Snake Oil API shutting down")
    if change_feed.feed_transport is not None:
        await change_feed.feed_transport.close()
    if database.db_manager is not None:
        await database.db_manager.dispose()


app = FastAPI(
    title="Snake Oil API", version="1.0.0", lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(game_stream.router)
app.include_router(games.router)

register_error_handlers(app)
