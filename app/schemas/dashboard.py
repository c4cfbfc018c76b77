from __future__ import annotations

from enum import Enum as PyEnum

from pydantic import Field

from app.schemas.health_event import CamelModel


class DataHealth(str, PyEnum):
    HEALTHY = "Healthy"
    STALE = "Stale"


class SystemStatus(CamelModel):
    subscription_id: str
    cached_at: str
    last_event_time: str | None
    cache_age: str | None
    cache_age_minutes: float | None
    data_health: DataHealth
    next_update: str | None


class Statistics(CamelModel):
    total_events: int
    active_issues: int
    by_type: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
    by_level: dict[str, int] = Field(default_factory=dict)


class AffectedItem(CamelModel):
    name: str
    count: int


class TopAffected(CamelModel):
    services: list[AffectedItem] = Field(default_factory=list)
    regions: list[AffectedItem] = Field(default_factory=list)


class Trends(CamelModel):
    last_24_hours: int = Field(alias="last24Hours")
    last_7_days: int = Field(alias="last7Days")
    last_30_days: int = Field(alias="last30Days")


class DashboardResponse(CamelModel):
    system_status: SystemStatus
    statistics: Statistics
    top_affected: TopAffected
    trends: Trends


class ErrorResponse(CamelModel):
    error: str
