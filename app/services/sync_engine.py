"""Incremental synchronization of the health event cache.

The merge itself (``merge_snapshot``) is a pure function of the previous
snapshot, a freshly fetched batch and the current time. ``SyncService`` wraps
it with the read -> fetch -> merge -> conditional write sequence the poller
runs on every tick.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from app.core.config import Settings
from app.core.logger import get_logger
from app.core.timestamps import format_timestamp, parse_timestamp, utcnow
from app.schemas.health_event import CacheSnapshot, HealthEvent
from app.services.cache_store import CacheStore
from app.services.event_source import EventSourceClient

logger = get_logger(component="SyncEngine")

DEFAULT_CATCHUP = timedelta(days=7)

# Unparsable timestamps rank below every real one.
_LEAST_RECENT = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class SyncResult:
    snapshot: CacheSnapshot | None
    written: bool
    start_time: datetime
    fetched_count: int = 0
    new_event_count: int = 0
    updated_event_count: int = 0
    new_keys: list[str] = field(default_factory=list)


def identity_key(event: HealthEvent) -> str:
    """Dedup key: tracking id, else resource id, else a one-off surrogate.

    Events with neither id get a fresh key on every call and therefore never
    deduplicate against anything.
    """
    return event.tracking_id or event.id or f"generated-{uuid4()}"


def determine_start_time(
    previous: CacheSnapshot | None, now: datetime, catchup: timedelta = DEFAULT_CATCHUP
) -> datetime:
    if previous is not None:
        watermark = parse_timestamp(previous.last_event_time)
        if watermark is not None:
            return watermark
        logger.warning(
            "Cached watermark is not a valid timestamp, using catch-up window",
            last_event_time=previous.last_event_time,
            catchup_days=catchup.days,
        )
    return now - catchup


def sort_by_recency(events: Iterable[HealthEvent]) -> list[HealthEvent]:
    """Stable sort, most recent first; events without a parsable time go last."""
    ranked = [(parse_timestamp(event.last_update_time) or _LEAST_RECENT, event) for event in events]
    ranked.sort(key=lambda pair: pair[0], reverse=True)
    return [event for _, event in ranked]


def deduplicate(events: Iterable[HealthEvent]) -> list[HealthEvent]:
    seen: set[str] = set()
    unique: list[HealthEvent] = []
    for event in events:
        key = identity_key(event)
        if key in seen:
            continue
        seen.add(key)
        unique.append(event)
    return unique


def _count_updates(previous_events: list[HealthEvent], batch: list[HealthEvent]) -> int:
    cached_times = {}
    for event in previous_events:
        cached_times[identity_key(event)] = parse_timestamp(event.last_update_time)
    updated = 0
    for event in batch:
        key = identity_key(event)
        if key not in cached_times:
            continue
        fetched_time = parse_timestamp(event.last_update_time)
        cached_time = cached_times[key]
        if fetched_time is not None and (cached_time is None or fetched_time > cached_time):
            updated += 1
    return updated


def merge_snapshot(
    previous: CacheSnapshot | None,
    batch: list[HealthEvent],
    *,
    subscription_id: str,
    now: datetime | None = None,
    catchup: timedelta = DEFAULT_CATCHUP,
    write_on_update: bool = False,
    start_time: datetime | None = None,
) -> SyncResult:
    """Merge a fetched batch into the previous snapshot.

    A new snapshot is only produced when the batch contains at least one
    identity key the previous snapshot does not know. Fetched updates to known
    keys do not trigger a write on their own (unless ``write_on_update``), but
    once a write happens the most recent version of every key wins. Pass the
    ``start_time`` the batch was fetched from to avoid recomputing it.
    """
    now = now or utcnow()
    if start_time is None:
        start_time = determine_start_time(previous, now, catchup)
    previous_events = previous.events if previous is not None else []

    known_keys = {identity_key(event) for event in previous_events}
    new_keys: list[str] = []
    for event in batch:
        key = identity_key(event)
        if key not in known_keys:
            known_keys.add(key)
            new_keys.append(key)
    updated_count = _count_updates(previous_events, batch) if write_on_update else 0

    if not new_keys and not updated_count:
        return SyncResult(
            snapshot=previous,
            written=False,
            start_time=start_time,
            fetched_count=len(batch),
        )

    merged = deduplicate(sort_by_recency([*batch, *previous_events]))

    head_time = parse_timestamp(merged[0].last_update_time) if merged else None
    snapshot = CacheSnapshot(
        subscription_id=subscription_id,
        cached_at=format_timestamp(now),
        last_event_time=format_timestamp(head_time or now),
        tracking_ids=[event.tracking_id for event in merged if event.tracking_id],
        events=merged,
    )
    return SyncResult(
        snapshot=snapshot,
        written=True,
        start_time=start_time,
        fetched_count=len(batch),
        new_event_count=len(new_keys),
        updated_event_count=updated_count,
        new_keys=new_keys,
    )


class SyncService:
    """Runs one poll cycle: read cache, fetch from the watermark, merge, write if changed.

    Any failure before the write leaves the stored snapshot untouched.
    """

    def __init__(self, *, settings: Settings, cache_store: CacheStore, event_source: EventSourceClient) -> None:
        self.settings = settings
        self.cache_store = cache_store
        self.event_source = event_source

    async def run_once(self, now: datetime | None = None) -> SyncResult:
        subscription_id = self.settings.require_subscription_id()
        cache_key = self.settings.cache_key
        catchup = timedelta(days=self.settings.sync_catchup_days)
        now = now or utcnow()

        previous = await self.cache_store.get(cache_key)
        start_time = determine_start_time(previous, now, catchup)
        batch = await self.event_source.fetch(subscription_id, start_time)

        result = merge_snapshot(
            previous,
            batch,
            subscription_id=subscription_id,
            now=now,
            catchup=catchup,
            write_on_update=self.settings.sync_write_on_update,
            start_time=start_time,
        )

        if not result.written:
            logger.info(
                "No new health events, cache left unchanged",
                subscription_id=subscription_id,
                start_time=format_timestamp(start_time),
                fetched=result.fetched_count,
            )
            return result

        await self.cache_store.put(cache_key, result.snapshot)
        logger.info(
            "Health event cache updated",
            subscription_id=subscription_id,
            start_time=format_timestamp(start_time),
            fetched=result.fetched_count,
            new_events=result.new_event_count,
            updated_events=result.updated_event_count,
            total_events=len(result.snapshot.events),
            last_event_time=result.snapshot.last_event_time,
        )
        return result
