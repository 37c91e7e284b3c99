import os
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Tests never reach a real FHIR server
os.environ["FHIR_SERVER_URL"] = ""

from patient_summary.config import SummarySettings
from patient_summary.main import app
from patient_summary.routers.summary import get_directory


@pytest.fixture
def settings():
    return SummarySettings()


@pytest.fixture
def now():
    """A fixed generation time: 10 June 2025 08:38 AEST."""
    return datetime(2025, 6, 9, 22, 38, tzinfo=UTC)


@pytest.fixture
def override_directory():
    """Install a directory for the HTTP layer; undone after the test."""

    def install(directory):
        app.dependency_overrides[get_directory] = lambda: directory
        return directory

    yield install
    app.dependency_overrides.pop(get_directory, None)


@pytest_asyncio.fixture
async def async_client():
    """Provide an async httpx client for HTTP tests."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
