"""Fixtures for API unit tests: app wired to an in-memory governance service, AsyncClient."""

import pytest
from httpx import ASGITransport, AsyncClient

from opsguard.main import app


@pytest.fixture
def app_with_overrides(service):
    """App with the governance service overridden for testing."""
    from opsguard.api import dependencies

    app.dependency_overrides[dependencies.get_governance_service] = lambda: service
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app_with_overrides):
    transport = ASGITransport(app=app_with_overrides)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def operator_headers():
    return {"X-Operator-ID": "alice"}
