"""Root conftest - shared database, feed and service fixtures.

Invariants:
    - Every test gets a fresh file-backed SQLite database under tmp_path
    - db_manager built around the test engine (no pool sizing for SQLite)
    - One InMemoryTransport per test: every store and coordinator shares it

Design Decisions:
    - File-backed over :memory: so concurrent sessions get separate connections
      and the race tests exercise real transaction isolation
    - Record builders exposed as factory fixtures for the pure core tests
"""

import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///test.db")
os.environ.setdefault("FEED_TRANSPORT", "memory")

from snakeoil.core.domain_types import SessionStatus  # noqa: E402
from snakeoil.core.records import (  # noqa: E402
    ChatMessageRecord, RoundRecord, SessionRecord,
)
from snakeoil.db.base import Base  # noqa: E402
import snakeoil.models  # noqa: E402,F401
from snakeoil.infrastructure.change_feed import (  # noqa: E402
    ChangeFeedClient, InMemoryTransport,
)
from snakeoil.infrastructure.database import DatabaseSessionManager  # noqa: E402
from snakeoil.models.catalog import Role, Word  # noqa: E402
from snakeoil.services.content_oracle import ContentOracle  # noqa: E402
from snakeoil.services.session_coordinator import build_coordinator  # noqa: E402
from snakeoil.services.session_store import SessionStore  # noqa: E402

HOST = "host-user"
GUEST = "guest-user"
OUTSIDER = "outsider-user"

ROLE_NAMES = ("Negotiator", "Pirate", "Astronaut", "Wizard")
WORDS = ("Umbrella", "Toaster", "Cactus", "Rocket", "Blanket", "Sandwich", "Ladder", "Mirror")


# ─── Database ────────────────────────────────────────────────────

@pytest.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'snakeoil.db'}", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
def db_manager(test_engine, test_session_factory):
    manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    manager.engine = test_engine
    manager._session_factory = test_session_factory
    return manager


@pytest.fixture
async def catalog(test_session_factory):
    """Seed roles and words. Returns {"roles": {name: id}, "words": {word: id}}."""
    roles = {name: uuid.uuid4() for name in ROLE_NAMES}
    words = {word: uuid.uuid4() for word in WORDS}
    async with test_session_factory() as db:
        db.add_all(Role(id=i, name=n) for n, i in roles.items())
        db.add_all(Word(id=i, word=w) for w, i in words.items())
        await db.commit()
    return {"roles": roles, "words": words}


# ─── Services ────────────────────────────────────────────────────

@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def store(db_manager, transport):
    return SessionStore(db_manager, transport)


@pytest.fixture
def oracle(db_manager):
    return ContentOracle(db_manager)


@pytest.fixture
async def make_coordinator(store, oracle, transport):
    """Build coordinators on the shared transport; all are exited at teardown."""
    built = []

    def _make(user_id: str, feed_transport=None, max_retries: int = 3):
        feed = ChangeFeedClient(
            feed_transport or transport,
            max_retries=max_retries, base_delay_ms=1, max_delay_ms=5,
        )
        coordinator = build_coordinator(user_id, store, oracle, feed)
        built.append(coordinator)
        return coordinator

    yield _make
    for coordinator in built:
        await coordinator.exit()


@pytest.fixture
async def active_session(store):
    """Session with host and guest seated (round 1, nobody ready)."""
    session = await store.create_session(HOST)
    return await store.join_session(session.id, GUEST)


@pytest.fixture
def eventually():
    """Poll an (async or sync) predicate until it holds, yielding to the loop."""
    async def _eventually(predicate, timeout: float = 2.0):
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            result = predicate()
            if asyncio.iscoroutine(result):
                result = await result
            if result:
                return
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)
    return _eventually


# ─── Record builders (pure tests) ────────────────────────────────

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def make_session():
    def _make(**overrides) -> SessionRecord:
        fields = dict(
            id=uuid.UUID(int=1), host_id=HOST, guest_id=GUEST,
            status=SessionStatus.IN_PROGRESS, current_round=1,
            host_ready=False, guest_ready=False, version=1, created_at=_EPOCH,
        )
        fields.update(overrides)
        return SessionRecord(**fields)
    return _make


@pytest.fixture
def make_round():
    def _make(**overrides) -> RoundRecord:
        fields = dict(
            id=uuid.UUID(int=100), session_id=uuid.UUID(int=1), round_number=1,
            customer_id=HOST, seller_id=GUEST, version=1, created_at=_EPOCH,
        )
        fields.update(overrides)
        return RoundRecord(**fields)
    return _make


@pytest.fixture
def make_message():
    def _make(n: int, seconds: int = 0, **overrides) -> ChatMessageRecord:
        fields = dict(
            id=uuid.UUID(int=1000 + n), session_id=uuid.UUID(int=1),
            user_id=HOST, content=f"message {n}",
            created_at=_EPOCH + timedelta(seconds=seconds),
        )
        fields.update(overrides)
        return ChatMessageRecord(**fields)
    return _make
