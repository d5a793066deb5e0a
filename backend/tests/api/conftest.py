"""API test fixtures - FastAPI app with database and feed dependencies overridden.

Invariants:
    - Routes see the same db_manager and InMemoryTransport as the service fixtures
    - Module singletons untouched: overrides go through app.dependency_overrides
"""

import pytest
from httpx import ASGITransport, AsyncClient

from snakeoil.api.deps import get_db_manager, get_transport
from snakeoil.main import app


@pytest.fixture
async def client(db_manager, transport):
    app.dependency_overrides[get_db_manager] = lambda: db_manager
    app.dependency_overrides[get_transport] = lambda: transport
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def as_user():
    """Header dict for a caller identity."""
    return lambda user_id: {"X-User-Id": user_id}
