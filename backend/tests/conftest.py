"""
Centralized Test Configuration.
"""

import itertools
import pytest
from decimal import Decimal
from datetime import date
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.reliability import revalidation_circuit_breaker
from backend.app.core.jwt import issue_principal_token
from backend.app.core.guards import Principal
from backend.app.models.enums import UserRole
from backend.app.models.user import User
from backend.app.models.scout import Scout
from backend.app.models.campout import Campout
from backend.app.models.parent_scout import ParentScout
import backend.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.published = []
        self.fail_publish = False
        self._closed = False
    
    async def ping(self):
        if self._closed:
            return False
        return True
    
    async def publish(self, channel, message):
        if self.fail_publish or self._closed:
            raise ConnectionError("Redis unavailable")
        self.published.append((channel, message))
        return 1
        
    async def flushdb(self):
        if not self._closed:
            self.store = {}
            self.published = []
            self.fail_publish = False
        
    async def aclose(self):
        self._closed = True
        self.store = {}

# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
async def redis_client_session():
    return MockRedis()

@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """
    
    # Patch the global redis client used by the revalidation publisher
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session
    
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    
    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client

@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    await redis_client_session.flushdb()
    revalidation_circuit_breaker.reset_state()
    
    yield
    
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session

@pytest.fixture
def session_factory():
    return TestingSessionLocal


# Troop fixtures
# Rows are detached after commit so a service rollback on the shared
# session cannot expire them under the test.

@pytest.fixture
def make_user(db_session):
    counter = itertools.count(1)
    
    async def _make(role=UserRole.PARENT, name=None):
        n = next(counter)
        user = User(
            email=f"{role.value.lower()}{n}@troop.test",
            name=name or f"{role.value.title()} {n}",
            role=role,
            is_active=True,
        )
        db_session.add(user)
        await db_session.commit()
        db_session.expunge(user)
        return user
    
    return _make

@pytest.fixture
def make_principal(make_user):
    async def _make(role=UserRole.PARENT, name=None):
        user = await make_user(role=role, name=name)
        return Principal(user_id=user.id, role=user.role, username=user.email)
    
    return _make

@pytest.fixture
async def admin(make_principal):
    return await make_principal(UserRole.ADMIN, "Alice Admin")

@pytest.fixture
async def financier(make_principal):
    return await make_principal(UserRole.FINANCIER, "Frank Financier")

@pytest.fixture
async def leader(make_principal):
    return await make_principal(UserRole.LEADER, "Lena Leader")

@pytest.fixture
def make_scout(db_session):
    async def _make(name, balance=Decimal("0.00"), user_id=None):
        scout = Scout(name=name, iba_balance=Decimal(balance), user_id=user_id)
        db_session.add(scout)
        await db_session.commit()
        db_session.expunge(scout)
        return scout
    
    return _make

@pytest.fixture
def make_campout(db_session):
    async def _make(name="Spring Camporee"):
        campout = Campout(
            name=name,
            location="Camp Whitsett",
            start_date=date(2026, 4, 10),
            end_date=date(2026, 4, 12),
            estimated_cost=Decimal("0.00"),
        )
        db_session.add(campout)
        await db_session.commit()
        db_session.expunge(campout)
        return campout
    
    return _make

@pytest.fixture
def link_parent(db_session):
    async def _link(parent_id, scout_id):
        db_session.add(ParentScout(parent_id=parent_id, scout_id=scout_id))
        await db_session.commit()
    
    return _link

@pytest.fixture
def auth_headers():
    def _headers(principal: Principal) -> dict:
        token = issue_principal_token(principal.user_id, principal.role, principal.username)
        return {"Authorization": f"Bearer {token}"}
    
    return _headers
