"""Shared test fixtures — async DB, ledgers, client, auth helpers.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL, plus the
in-memory stores for exercising the ledger state machine on its own.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_ledger.auth.policy import DefaultAccessPolicy
from leave_ledger.common.constants import UserRole
from leave_ledger.config import settings
from leave_ledger.database import Base
from leave_ledger.dependencies import get_ledger
from leave_ledger.leave.memory import InMemoryLedgerStorage
from leave_ledger.leave.service import LeaveLedger
from leave_ledger.leave.stores import DefaultAllocations, sql_unit_of_work_factory
from leave_ledger.main import create_app

# Register every table on Base.metadata
import leave_ledger.common.audit  # noqa: F401
import leave_ledger.leave.models  # noqa: F401

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Calendar fixed for every test ───────────────────────────────────

# Monday
TODAY = date(2026, 3, 2)
NEXT_MONDAY = date(2026, 3, 9)
NEXT_FRIDAY = date(2026, 3, 13)

DEFAULT_ALLOCATIONS = {"sick": 15, "casual": 5, "vacation": 10}


def fixed_clock() -> date:
    return TODAY


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from leave_ledger.common.rate_limit import limiter

    limiter.reset()
    yield


# ── Ledgers ─────────────────────────────────────────────────────────

@pytest.fixture
def access_policy(employee_id, manager_id) -> DefaultAccessPolicy:
    """The test manager manages the test employee."""
    return DefaultAccessPolicy({manager_id: {employee_id}})


@pytest.fixture
def ledger(access_policy) -> LeaveLedger:
    """Ledger over the SQLite test database."""
    return LeaveLedger(
        sql_unit_of_work_factory(
            TestSessionFactory, DefaultAllocations(DEFAULT_ALLOCATIONS),
        ),
        access_policy=access_policy,
        clock=fixed_clock,
    )


@pytest.fixture
def storage() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage(DefaultAllocations(DEFAULT_ALLOCATIONS))


@pytest.fixture
def memory_ledger(storage, access_policy) -> LeaveLedger:
    """Ledger over the in-memory stores."""
    return LeaveLedger(storage.factory, access_policy=access_policy, clock=fixed_clock)


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(ledger):
    """Create a fresh app instance with the ledger dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_ledger] = lambda: ledger
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole | str = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "role": role.value if isinstance(role, UserRole) else role,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers_for(
    employee_id: uuid.UUID,
    role: UserRole | str = UserRole.employee,
) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id, role)}"}


@pytest.fixture
def employee_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def manager_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def hr_id() -> uuid.UUID:
    return uuid.uuid4()
