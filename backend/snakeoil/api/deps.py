"""API Dependencies - caller identity and service wiring for route handlers.

Invariants:
    - Caller identity is the opaque X-User-Id header; it is never interpreted
    - Singletons are read at call time (they are initialized by the lifespan)

Design Decisions:
    - Every collaborator is a dependency so tests swap them via dependency_overrides
"""

from typing import Annotated

from fastapi import Depends, Header

from snakeoil.config import Settings, get_settings
from snakeoil.core.errors import StoreWriteError
from snakeoil.infrastructure import change_feed, database
from snakeoil.infrastructure.change_feed import ChangeFeedClient, FeedTransport
from snakeoil.infrastructure.database import DatabaseSessionManager
from snakeoil.services.content_oracle import ContentOracle
from snakeoil.services.session_coordinator import SessionCoordinator, build_coordinator
from snakeoil.services.session_store import SessionStore


async def get_user_id(
    x_user_id: Annotated[str, Header(min_length=1, max_length=64)],
) -> str:
    return x_user_id


def get_db_manager() -> DatabaseSessionManager:
    if database.db_manager is None:
        raise StoreWriteError("Database not initialized", "connect")
    return database.db_manager


def get_transport() -> FeedTransport:
    if change_feed.feed_transport is None:
        raise RuntimeError("Change feed not initialized")
    return change_feed.feed_transport


def get_store(
    db: DatabaseSessionManager = Depends(get_db_manager),
    transport: FeedTransport = Depends(get_transport),
) -> SessionStore:
    return SessionStore(db, transport)


def get_oracle(db: DatabaseSessionManager = Depends(get_db_manager)) -> ContentOracle:
    return ContentOracle(db)


def get_coordinator(
    user_id: str = Depends(get_user_id),
    store: SessionStore = Depends(get_store),
    oracle: ContentOracle = Depends(get_oracle),
    transport: FeedTransport = Depends(get_transport),
    settings: Settings = Depends(get_settings),
) -> SessionCoordinator:
    """Fresh coordinator per request; only the stream route enters a session."""
    feed = ChangeFeedClient(
        transport,
        max_retries=settings.feed_max_retries,
        base_delay_ms=settings.feed_base_delay_ms,
        max_delay_ms=settings.feed_max_delay_ms,
    )
    return build_coordinator(user_id, store, oracle, feed, settings)
