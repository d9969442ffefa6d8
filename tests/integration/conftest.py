"""Integration test fixtures: the HTTP API over the per-test database."""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from rcti_engine.api.app import create_app
from rcti_engine.api.dependencies import get_db_session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing.

    Request sessions come from the same in-memory engine as the ``session``
    fixture, so rows built with the factories are visible to the API.
    """
    app = create_app()

    async def override_db_session():
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_db_session] = override_db_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
