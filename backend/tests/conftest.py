"""
Pytest fixtures for test database, client, and authentication.

Each test gets a fresh in-memory SQLite database. The API runs with one
session per request, committed or rolled back like the production
dependency, so a failed request leaves no partial writes behind.
"""

import time
from datetime import date, datetime, timezone, timedelta
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from carrental.main import app
from carrental.db.base import Base
from carrental.db.session import get_db
from carrental.core.security import create_access_token, hash_password
from carrental.models import Booking, Car, Driver, User
from carrental.models.user import ROLE_ADMIN
from carrental.services.cache_service import OtpStore, get_otp_store
from carrental.services.gateway_factory import get_gateway
from carrental.services.interfaces.payment_gateway import (
    InitiatedPayment,
    LookedUpPayment,
    PaymentGateway,
    VerifiedPayment,
)

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FakeGateway(PaymentGateway):
    """Scripted Khalti stand-in. Set `fail_with` to make every call raise."""

    def __init__(self):
        self.statuses: dict[str, str] = {}
        self.transaction_ids: dict[str, str] = {}
        self.verified_tokens: dict[str, str] = {}
        self.fail_with: Optional[Exception] = None
        self.calls: list[tuple] = []
        self._counter = 0

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def initiate(self, *, amount_paisa, purchase_order_id, purchase_order_name, return_url, customer_info):
        self.calls.append(("initiate", purchase_order_id, amount_paisa))
        self._check()
        self._counter += 1
        pidx = f"pidx-{purchase_order_id}-{self._counter}"
        self.statuses[pidx] = "Initiated"
        return InitiatedPayment(pidx=pidx, payment_url=f"https://pay.test/{pidx}")

    async def verify(self, token, amount_paisa):
        self.calls.append(("verify", token, amount_paisa))
        self._check()
        return VerifiedPayment(idx=self.verified_tokens.get(token))

    async def lookup(self, pidx):
        self.calls.append(("lookup", pidx))
        self._check()
        return LookedUpPayment(
            pidx=pidx,
            status=self.statuses.get(pidx, "Pending"),
            transaction_id=self.transaction_ids.get(pidx),
        )


class FakeRedis:
    """The three redis.asyncio calls OtpStore makes, with TTL expiry."""

    def __init__(self):
        self.data: dict[str, tuple[str, float]] = {}
        self.offset = 0.0

    def _now(self) -> float:
        return time.monotonic() + self.offset

    def advance(self, seconds: float) -> None:
        self.offset += seconds

    async def setex(self, key, ttl, value):
        self.data[key] = (value, self._now() + ttl)

    async def get(self, key):
        item = self.data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._now() >= expires_at:
            del self.data[key]
            return None
        return value

    async def delete(self, key):
        self.data.pop(key, None)


@pytest_asyncio.fixture(scope="function")
async def session_factory():
    """Create tables on a fresh in-memory database; drop them afterwards."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, fake_gateway, fake_redis) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the DB, gateway and OTP store dependencies overridden."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_otp_store():
        return OtpStore(fake_redis, ttl_seconds=300, length=6)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_otp_store] = override_get_otp_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _add(db_session: AsyncSession, obj):
    db_session.add(obj)
    await db_session.commit()
    await db_session.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await _add(
        db_session,
        User(
            email="test@example.com",
            name="Test User",
            phone="9800000000",
            hashed_password=hash_password("testpassword123"),
        ),
    )


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _add(
        db_session,
        User(
            email="other@example.com",
            name="Other User",
            hashed_password=hash_password("otherpassword123"),
        ),
    )


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _add(
        db_session,
        User(
            email="admin@example.com",
            name="Admin",
            hashed_password=hash_password("adminpassword123"),
            role=ROLE_ADMIN,
        ),
    )


def _headers_for(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    return _headers_for(test_user)


@pytest.fixture
def other_headers(other_user: User) -> dict:
    return _headers_for(other_user)


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return _headers_for(admin_user)


@pytest_asyncio.fixture
async def test_car(db_session: AsyncSession) -> Car:
    return await _add(
        db_session,
        Car(
            name="Corolla",
            brand="Toyota",
            type="Sedan",
            transmission="Automatic",
            fuel="Petrol",
            price_per_day=3500,
        ),
    )


def _driver(n: int) -> Driver:
    return Driver(
        name=f"Driver {n}",
        license_number=f"LIC-{n:04d}",
        phone=f"98000000{n:02d}",
        email=f"driver{n}@example.com",
        address="Kathmandu",
        date_of_birth=date(1990, 1, 1),
        experience=5,
    )


@pytest_asyncio.fixture
async def test_driver(db_session: AsyncSession) -> Driver:
    return await _add(db_session, _driver(1))


@pytest_asyncio.fixture
async def second_driver(db_session: AsyncSession) -> Driver:
    return await _add(db_session, _driver(2))


async def make_booking(db_session: AsyncSession, user: User, car: Car, **overrides) -> Booking:
    start = datetime.now(timezone.utc) + timedelta(days=3)
    fields = dict(
        user_id=user.id,
        car_id=car.id,
        start_date=start,
        end_date=start + timedelta(days=2),
        address="Thamel, Kathmandu",
        email=user.email,
        contact="9800000000",
        location_lat=27.7172,
        location_lng=85.3240,
        total_amount=7000,
    )
    fields.update(overrides)
    return await _add(db_session, Booking(**fields))


@pytest_asyncio.fixture
async def pending_booking(db_session: AsyncSession, test_user: User, test_car: Car) -> Booking:
    return await make_booking(db_session, test_user, test_car)


@pytest_asyncio.fixture
async def second_booking(db_session: AsyncSession, test_user: User, test_car: Car) -> Booking:
    return await make_booking(db_session, test_user, test_car, total_amount=5000)


@pytest.fixture
def booking_factory(db_session: AsyncSession, test_user: User, test_car: Car):
    """Create extra bookings: `await booking_factory(status="confirmed")`."""

    async def _make(user: Optional[User] = None, **overrides) -> Booking:
        return await make_booking(db_session, user or test_user, test_car, **overrides)

    return _make
