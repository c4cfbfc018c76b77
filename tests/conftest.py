from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure environment variables are set before application settings are imported.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("AZURE_SUBSCRIPTION_ID", "00000000-0000-0000-0000-000000000000")
os.environ.setdefault("HEALTH_CACHE_BUCKET", "servicehealth-test")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test-access-key")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test-secret-key")
os.environ.setdefault("ENABLE_HEALTH_POLLER", "false")
os.environ.setdefault("LOG_FORMAT", "text")

from app.api import dependencies as dependencies_module
from app.core.config import Settings
from app.main import create_app
from app.services.cache_store import CacheStore
from app.services.dashboard import DashboardAggregator


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        subscription_id="sub-1",
        cache_bucket="servicehealth-test",
        cache_key="servicehealth/cache.json",
        aws_region="us-east-1",
        resource_graph_url="https://graph.example.test",
        resource_graph_token="test-token",
        enable_health_poller=True,
    )


@pytest.fixture
def api_environment() -> dict[str, object]:
    app = create_app()

    dependencies_module.get_cache_store.cache_clear()
    dependencies_module.get_dashboard_aggregator.cache_clear()

    mock_cache_store = MagicMock(spec=CacheStore)
    mock_cache_store.get = AsyncMock(return_value=None)
    app.dependency_overrides[dependencies_module.get_cache_store] = lambda: mock_cache_store
    app.dependency_overrides[dependencies_module.get_dashboard_aggregator] = lambda: DashboardAggregator(
        Settings()
    )

    return {"app_instance": app, "mock_cache_store": mock_cache_store}


@pytest.fixture
async def async_client(api_environment) -> AsyncGenerator[AsyncClient, None]:
    app = api_environment["app_instance"]
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
