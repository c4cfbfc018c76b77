from __future__ import annotations
from functools import lru_cache
import httpx

from app.core.config import settings
from app.services.cache_store import CacheStore
from app.services.dashboard import DashboardAggregator
from app.services.event_source import EventSourceClient
from app.services.sync_engine import SyncService


@lru_cache(maxsize=1)
def get_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient()


@lru_cache(maxsize=1)
def get_cache_store() -> CacheStore:
    return CacheStore(settings)


@lru_cache(maxsize=1)
def get_event_source() -> EventSourceClient:
    return EventSourceClient(get_http_client(), settings)


@lru_cache(maxsize=1)
def get_sync_service() -> SyncService:
    return SyncService(
        settings=settings,
        cache_store=get_cache_store(),
        event_source=get_event_source(),
    )


@lru_cache(maxsize=1)
def get_dashboard_aggregator() -> DashboardAggregator:
    return DashboardAggregator(settings)
