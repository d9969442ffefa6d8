"""Pytest fixtures for RCTI engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rcti_engine.config import Settings
from rcti_engine.database import create_schema
from rcti_engine.models import Driver

# In-memory SQLite shared across connections of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
def test_settings() -> Settings:
    """Settings independent of the environment."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        gst_rate=Decimal("0.10"),
        break_threshold_hours=Decimal("7"),
        revert_reason_min_length=5,
    )


@pytest_asyncio.fixture
async def engine():
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Fleet data
# ============================================================================


@pytest_asyncio.fixture
async def contractor(session: AsyncSession) -> Driver:
    """A GST-registered contractor with rates for every truck class."""
    driver = Driver(
        name="Sam Driver",
        business_name="Sam's Haulage",
        driver_type="Contractor",
        address="1 Depot Rd, Brisbane QLD",
        abn="12 345 678 901",
        gst_status="registered",
        gst_mode="exclusive",
        bank_account_name="Sam's Haulage Pty Ltd",
        bank_bsb="123-456",
        bank_account_number="12345678",
        tray=Decimal("50.00"),
        crane=Decimal("60.00"),
        semi=Decimal("70.00"),
        semi_crane=Decimal("80.00"),
    )
    session.add(driver)
    await session.commit()
    return driver


@pytest_asyncio.fixture
async def employee(session: AsyncSession) -> Driver:
    """An employee driver; RCTIs and deductions do not apply."""
    driver = Driver(name="Erin Employee", driver_type="Employee", tray=Decimal("40.00"))
    session.add(driver)
    await session.commit()
    return driver
