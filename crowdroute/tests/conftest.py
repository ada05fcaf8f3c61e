"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from crowdroute.app.main import app
from crowdroute.app.db.session import get_db, Base
from crowdroute.app.core.reliability import cache_circuit_breaker
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.enums import ContributorRole
from crowdroute.app.models.location import Location
from crowdroute.app.models.location_enums import LocationType, NigerianState
import crowdroute.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def delete(self, key):
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture(autouse=True)
def apply_overrides(session_factory, mock_redis):
    """Point the app at the test database and the in-memory Redis."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = mock_redis
    cache_circuit_breaker.reset_state()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client
    cache_circuit_breaker.reset_state()


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_contributor(db_session):
    """Factory: committed contributor with a given reputation."""
    counter = {"n": 0}

    async def _make(reputation: int = 0, role: ContributorRole = ContributorRole.CONTRIBUTOR, username: str = None):
        counter["n"] += 1
        contributor = Contributor(
            username=username or f"rider{counter['n']}",
            role=role,
            reputation_score=reputation,
            total_contributions=0,
            is_active=True,
        )
        db_session.add(contributor)
        await db_session.commit()
        await db_session.refresh(contributor)
        return contributor

    return _make


@pytest.fixture
def make_location(db_session):
    """Factory: committed active location in Lagos."""
    async def _make(name: str, latitude: float, longitude: float, city: str = "Ikeja", **kwargs):
        location = Location(
            name=name,
            latitude=latitude,
            longitude=longitude,
            city=city,
            state=kwargs.pop("state", NigerianState.LAGOS),
            location_type=kwargs.pop("location_type", LocationType.BUS_STOP),
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db_session.add(location)
        await db_session.commit()
        await db_session.refresh(location)
        return location

    return _make



@pytest.fixture
async def corridor(db_session, make_contributor, make_location):
    """
    Active two-step route A -> M (bus) -> B (keke).

    Step 1 is published at 250-400, step 2 at 100-150.
    """
    from crowdroute.app.schemas.route import RouteCreate
    from crowdroute.app.services.route_structure import create_route

    creator = await make_contributor(reputation=100, username="route-author")
    a = await make_location("Ikeja Under Bridge", 6.6018, 3.3515)
    m = await make_location("Maryland Bus Stop", 6.5710, 3.3670, city="Maryland")
    b = await make_location("Yaba Bus Stop", 6.5095, 3.3711, city="Yaba")

    route, steps = await create_route(db_session, RouteCreate(
        start_location_id=a.id,
        end_location_id=b.id,
        name="Ikeja to Yaba",
        steps=[
            {"step_number": 1, "from_location_id": a.id, "to_location_id": m.id, "vehicle_type": "bus",
             "instructions": "Take the Yaba bus from under the bridge", "fare_min": 250, "fare_max": 400,
             "duration": 25},
            {"step_number": 2, "from_location_id": m.id, "to_location_id": b.id, "vehicle_type": "keke",
             "instructions": "Keke from Maryland to Yaba market", "fare_min": 100, "fare_max": 150,
             "duration": 15},
        ],
    ), creator)
    return {"route": route, "steps": steps, "creator": creator, "locations": (a, m, b)}
