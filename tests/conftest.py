"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database per test, a mocked Redis,
an httpx client bound to the ASGI app, and seeded users/catalog rows.
"""

import os

# Must be set before config.settings is imported anywhere
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_marketplace.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("NOTIFICATION_BACKEND", "background")
os.environ.setdefault("PAYMENT_GATEWAY_MODE", "demo")

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert

import config.redis_client
from config.database import AsyncSessionLocal, Base, engine
from main import app
from shared.models.models import (
    Category,
    Lawyer,
    Service,
    User,
    UserRole,
    service_lawyers,
)
from shared.utils.security import create_access_token, hash_password

TEST_PASSWORD = "password123"


def auth_headers(user: User) -> dict:
    """Bearer header for a user, signed with the test JWT secret."""
    token, _ = create_access_token(
        user_id=str(user.id),
        role=UserRole(user.role).value,
        email=user.email,
    )
    return {"Authorization": f"Bearer {token}"}


# ── Infrastructure ─────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def redis_mock():
    """Stand-in for the Redis client: nothing cached, nothing revoked, never rate limited."""
    mock = AsyncMock()
    mock.get.return_value = None
    mock.exists.return_value = 0
    mock.incr.return_value = 1
    previous = config.redis_client.redis_client
    config.redis_client.redis_client = mock
    yield mock
    config.redis_client.redis_client = previous


@pytest_asyncio.fixture(autouse=True)
async def tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(tables):
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client(tables):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Users ──────────────────────────────────────────────────────────────────────

async def _make_user(db, name: str, email: str, role: UserRole) -> User:
    user = User(name=name, email=email, password_hash=hash_password(TEST_PASSWORD), role=role)
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def user(db) -> User:
    return await _make_user(db, "Test Customer", "customer@example.com", UserRole.CUSTOMER)


@pytest_asyncio.fixture
async def other_user(db) -> User:
    return await _make_user(db, "Other Customer", "other@example.com", UserRole.CUSTOMER)


@pytest_asyncio.fixture
async def admin_user(db) -> User:
    return await _make_user(db, "Admin", "admin@example.com", UserRole.ADMIN)


@pytest_asyncio.fixture
async def lawyer_user(db) -> User:
    return await _make_user(db, "Jane Counsel", "lawyer@example.com", UserRole.LAWYER)


@pytest_asyncio.fixture
async def lawyer_profile(db, lawyer_user: User) -> Lawyer:
    lawyer = Lawyer(
        user_id=lawyer_user.id,
        experience=10,
        areas_of_expertise=["Family Law", "Estate Planning"],
        hourly_rate=Decimal("50.00"),
        languages=["English"],
        is_verified=True,
    )
    db.add(lawyer)
    await db.commit()
    return lawyer


# ── Catalog ────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def category(db) -> Category:
    category = Category(name="Family Law", description="Divorce, custody and adoption", order=1)
    db.add(category)
    await db.commit()
    return category


@pytest_asyncio.fixture
async def service(db, category: Category, lawyer_profile: Lawyer) -> Service:
    """Divorce consultation: base price 100, offered by the lawyer_profile (rate 50)."""
    service = Service(
        name="Divorce Consultation",
        description="One hour consultation on divorce proceedings",
        category_id=category.id,
        base_price=Decimal("100.00"),
        duration=60,
        tags=["divorce"],
    )
    db.add(service)
    await db.flush()
    await db.execute(
        insert(service_lawyers).values(service_id=service.id, lawyer_id=lawyer_profile.id)
    )
    await db.commit()
    return service
