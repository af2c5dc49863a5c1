"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from skymap.app.main import app
from skymap.app.db.session import get_db, Base
from skymap.app.core.actor import Actor
from skymap.app.core.jwt import create_access_token
from skymap.app.core.reliability import CircuitBreaker
from skymap.app.models.business import Business
from skymap.app.models.enums import UserRole
from skymap.app.models.user import User
from skymap.app.services.notification_service import NotificationDispatcher, get_notifier
from skymap.app.services.sms_gateway import SmsResult

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
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


class FakeSmsGateway:
    """Records every SMS instead of calling the SMS API."""

    def __init__(self):
        self.sent = []
        self.succeed = True

    async def send(self, phone: str, text: str) -> SmsResult:
        self.sent.append((phone, text))
        if self.succeed:
            return SmsResult(success=True, message_id=str(len(self.sent)))
        return SmsResult(success=False, error="gateway unavailable")


@pytest.fixture
def sms_gateway():
    return FakeSmsGateway()


@pytest.fixture
def notifier(sms_gateway):
    return NotificationDispatcher(
        sms_gateway,
        session_factory=TestingSessionLocal,
        breaker=CircuitBreaker("sms-test", failure_threshold=5, reset_timeout=60),
    )


@pytest.fixture(autouse=True)
def apply_overrides(notifier):
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    # The in-memory connection is bound to this test's event loop
    await engine.dispose()


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session():
    """Shared session for fixture data creation."""
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    """Fresh sessions for reading back committed state."""
    return TestingSessionLocal


@pytest.fixture
async def business(db_session):
    acme = Business(name="Acme Traders", phone="0712000000", address="Kariakoo, Dar es Salaam")
    db_session.add(acme)
    await db_session.commit()
    await db_session.refresh(acme)
    return acme


@pytest.fixture
async def other_business(db_session):
    other = Business(name="Zanzi Spices", phone="0713000000")
    db_session.add(other)
    await db_session.commit()
    await db_session.refresh(other)
    return other


@pytest.fixture
async def users(db_session, business):
    """One user per role, plus a second rider and an inactive rider."""
    specs = {
        "admin": dict(name="Asha Admin", email="admin@skymap.test", role=UserRole.ADMIN),
        "staff": dict(name="Sefu Staff", email="staff@skymap.test", role=UserRole.STAFF),
        "rider": dict(name="Rashidi Rider", email="rider@skymap.test", role=UserRole.RIDER, phone="0754111222"),
        "rider2": dict(name="Neema Rider", email="rider2@skymap.test", role=UserRole.RIDER, phone="0754333444"),
        "inactive_rider": dict(name="Juma Rider", email="juma@skymap.test", role=UserRole.RIDER,
                               phone="0754555666", is_active=False),
        "business": dict(name="Acme Desk", email="desk@acme.test", role=UserRole.BUSINESS,
                         business_id=business.id),
    }
    created = {key: User(**spec) for key, spec in specs.items()}
    db_session.add_all(created.values())
    await db_session.commit()
    for user in created.values():
        await db_session.refresh(user)
    return created


@pytest.fixture
def actors(users):
    return {key: Actor.from_user(user) for key, user in users.items()}


@pytest.fixture
def auth_headers():
    """Bearer headers for a user, as issued by the auth collaborator."""
    def _headers(user: User) -> dict:
        token = create_access_token({
            "sub": user.email,
            "user_id": user.id,
            "role": user.role.value,
        })
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def delivery_payload(business):
    def _payload(**overrides) -> dict:
        payload = {
            "business_id": business.id,
            "pickup_address": "Plot 12, Samora Avenue",
            "pickup_name": "Acme Warehouse",
            "pickup_phone": "0712000000",
            "dropoff_address": "Mikocheni B, House 45",
            "dropoff_name": "Mama Zawadi",
            "dropoff_phone": "0765000111",
            "package_description": "Two boxes of textiles",
        }
        payload.update(overrides)
        return payload
    return _payload
