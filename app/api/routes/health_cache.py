from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.dependencies import get_cache_store, get_dashboard_aggregator
from app.core.config import settings
from app.schemas.dashboard import DashboardResponse, ErrorResponse
from app.schemas.health_event import CacheSnapshot
from app.services.cache_store import CacheStore
from app.services.dashboard import DashboardAggregator

router = APIRouter(prefix="/servicehealth", tags=["servicehealth"])

_ERROR_RESPONSES = {
    status.HTTP_204_NO_CONTENT: {"description": "No snapshot has been cached yet"},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}


@router.api_route(
    "/cache",
    methods=["GET", "POST"],
    response_model=CacheSnapshot,
    responses=_ERROR_RESPONSES,
)
async def get_cached_events(cache_store: CacheStore = Depends(get_cache_store)):
    snapshot = await cache_store.get(settings.cache_key)
    if snapshot is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return snapshot


@router.api_route(
    "/dashboard",
    methods=["GET", "POST"],
    response_model=DashboardResponse,
    responses=_ERROR_RESPONSES,
)
async def get_dashboard(
    top_n: str | None = Query(default=None, alias="topN"),
    cache_store: CacheStore = Depends(get_cache_store),
    aggregator: DashboardAggregator = Depends(get_dashboard_aggregator),
):
    snapshot = await cache_store.get(settings.cache_key)
    if snapshot is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return aggregator.build(snapshot, top_n=top_n)
