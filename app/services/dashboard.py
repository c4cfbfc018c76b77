from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import datetime, timedelta

from app.core.config import Settings
from app.core.timestamps import format_timestamp, parse_timestamp, utcnow
from app.schemas.dashboard import (
    AffectedItem,
    DashboardResponse,
    DataHealth,
    Statistics,
    SystemStatus,
    TopAffected,
    Trends,
)
from app.schemas.health_event import CacheSnapshot, EventStatus

DEFAULT_TOP_N = 5
MAX_TOP_N = 100
POLL_INTERVAL = timedelta(minutes=15)
UNKNOWN = "Unknown"

TREND_WINDOWS = {
    "last_24_hours": timedelta(hours=24),
    "last_7_days": timedelta(days=7),
    "last_30_days": timedelta(days=30),
}


def normalize_top_n(raw: object, default: int = DEFAULT_TOP_N) -> int:
    """Accept 1..100; anything else, including junk strings, means the default."""
    if isinstance(raw, bool):
        return default
    try:
        value = int(str(raw).strip()) if raw is not None else default
    except ValueError:
        return default
    if value < 1 or value > MAX_TOP_N:
        return default
    return value


def format_age(age: timedelta) -> str:
    total_minutes = max(int(age.total_seconds() // 60), 0)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"


def _top(counter: Counter, top_n: int) -> list[AffectedItem]:
    # sorted() is stable, so equal counts keep first-seen order
    ranked = sorted(counter.items(), key=lambda item: item[1], reverse=True)
    return [AffectedItem(name=name, count=count) for name, count in ranked[:top_n]]


def _group(values: Iterable[str | None]) -> dict[str, int]:
    return dict(Counter(value or UNKNOWN for value in values))


class DashboardAggregator:
    """Point-in-time analytics over a cached snapshot. Never touches storage."""

    def __init__(self, settings: Settings) -> None:
        self.stale_after = timedelta(minutes=settings.dashboard_stale_after_minutes)
        self.default_top_n = settings.dashboard_default_top_n

    def build(self, snapshot: CacheSnapshot, top_n: object = None, now: datetime | None = None) -> DashboardResponse:
        now = now or utcnow()
        top_n = normalize_top_n(top_n, self.default_top_n)
        events = snapshot.events

        services: Counter = Counter()
        regions: Counter = Counter()
        for event in events:
            for impact in event.impacted_services:
                if impact.impacted_service:
                    services[impact.impacted_service] += 1
                for region in impact.impacted_regions:
                    regions[region] += 1

        return DashboardResponse(
            system_status=self._system_status(snapshot, now),
            statistics=Statistics(
                total_events=len(events),
                active_issues=sum(1 for event in events if event.status == EventStatus.ACTIVE.value),
                by_type=_group(event.event_type for event in events),
                by_status=_group(event.status for event in events),
                by_level=_group(event.level for event in events),
            ),
            top_affected=TopAffected(services=_top(services, top_n), regions=_top(regions, top_n)),
            trends=self._trends(snapshot, now),
        )

    def _system_status(self, snapshot: CacheSnapshot, now: datetime) -> SystemStatus:
        cached_at = parse_timestamp(snapshot.cached_at)
        if cached_at is None:
            return SystemStatus(
                subscription_id=snapshot.subscription_id,
                cached_at=snapshot.cached_at,
                last_event_time=snapshot.last_event_time,
                cache_age=None,
                cache_age_minutes=None,
                data_health=DataHealth.STALE,
                next_update=None,
            )

        age = now - cached_at
        try:
            next_update = format_timestamp(cached_at + POLL_INTERVAL)
        except OverflowError:
            next_update = None
        return SystemStatus(
            subscription_id=snapshot.subscription_id,
            cached_at=snapshot.cached_at,
            last_event_time=snapshot.last_event_time,
            cache_age=format_age(age),
            cache_age_minutes=round(age.total_seconds() / 60, 1),
            data_health=DataHealth.HEALTHY if age < self.stale_after else DataHealth.STALE,
            next_update=next_update,
        )

    @staticmethod
    def _trends(snapshot: CacheSnapshot, now: datetime) -> Trends:
        counts = dict.fromkeys(TREND_WINDOWS, 0)
        for event in snapshot.events:
            updated = parse_timestamp(event.last_update_time)
            if updated is None:
                continue
            for name, window in TREND_WINDOWS.items():
                if updated >= now - window:
                    counts[name] += 1
        return Trends(**counts)
