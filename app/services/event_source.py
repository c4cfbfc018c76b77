from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from app.core.config import Settings
from app.core.logger import get_logger
from app.core.timestamps import format_timestamp
from app.schemas.health_event import HealthEvent

logger = get_logger(component="EventSourceClient")

SERVICE_HEALTH_QUERY = """
ServiceHealthResources
| where type =~ 'Microsoft.ResourceHealth/events'
| extend eventType = tostring(properties.EventType),
    status = tostring(properties.Status),
    trackingId = tostring(properties.TrackingId),
    title = tostring(properties.Title),
    summary = tostring(properties.Summary),
    level = tostring(properties.EventLevel),
    impactStartTime = todatetime(tolong(properties.ImpactStartTime)),
    impactMitigationTime = todatetime(tolong(properties.ImpactMitigationTime)),
    lastUpdateTime = todatetime(tolong(properties.LastUpdateTime)),
    impactedServices = properties.Impact
| where status =~ 'Active' or lastUpdateTime >= datetime({start_time})
| project id, trackingId, eventType, status, title, summary, level,
    impactStartTime, impactMitigationTime, lastUpdateTime, impactedServices
""".strip()


class EventQueryError(Exception):
    """Raised when the health event query fails."""


def build_query(start_time: datetime) -> str:
    return SERVICE_HEALTH_QUERY.format(start_time=format_timestamp(start_time))


def _normalize_impact(raw: Any) -> list[dict[str, Any]]:
    """Flatten Resource Graph ``properties.Impact`` into impact records.

    Raw shape: ``[{"ImpactedService": "...", "ImpactedRegions": [{"ImpactedRegion": "..."}]}]``.
    Records already in camelCase form pass through.
    """
    if not isinstance(raw, list):
        return []
    records = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        service = item.get("ImpactedService", item.get("impactedService"))
        regions = []
        for region in item.get("ImpactedRegions", item.get("impactedRegions")) or []:
            if isinstance(region, dict):
                region = region.get("ImpactedRegion") or region.get("impactedRegion")
            if region:
                regions.append(str(region))
        records.append({"impactedService": service, "impactedRegions": regions})
    return records


def parse_event_row(row: dict[str, Any]) -> HealthEvent:
    if not isinstance(row, dict):
        raise TypeError(f"expected an object row, got {type(row).__name__}")
    payload = dict(row)
    payload["impactedServices"] = _normalize_impact(row.get("impactedServices"))
    for field in ("lastUpdateTime", "impactStartTime", "impactMitigationTime"):
        value = payload.get(field)
        if value is not None and not isinstance(value, str):
            payload[field] = str(value)
    return HealthEvent.model_validate(payload)


class EventSourceClient:
    """
    Client for the Azure Resource Graph service health table.

    Returns every event that is either still Active or was updated at or after
    the requested start time. Result order is not guaranteed. The bearer token
    is supplied by configuration; acquiring it is the deployment's job.
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings) -> None:
        self.http_client = http_client
        self.base_url = str(settings.resource_graph_url).rstrip("/")
        self.api_version = settings.resource_graph_api_version
        self.token = settings.resource_graph_token
        self.timeout = settings.resource_graph_timeout
        self.page_size = settings.resource_graph_page_size

    async def fetch(self, subscription_id: str, start_time: datetime) -> list[HealthEvent]:
        """
        Query health events for a subscription.

        Args:
            subscription_id: Subscription whose events are queried
            start_time: Lower bound on lastUpdateTime for non-active events

        Returns:
            list[HealthEvent]: Unordered events, one per row

        Raises:
            EventQueryError: If the request fails or the response is malformed
        """
        query = build_query(start_time)
        rows: list[dict[str, Any]] = []
        skip_token: str | None = None
        page = 0

        while True:
            page += 1
            data = await self._query_page(subscription_id, query, skip_token)
            page_rows = data.get("data")
            if not isinstance(page_rows, list):
                raise EventQueryError("Resource Graph response has no data array")
            rows.extend(page_rows)
            skip_token = data.get("$skipToken")
            if not skip_token:
                break

        events: list[HealthEvent] = []
        for row in rows:
            try:
                events.append(parse_event_row(row))
            except (ValidationError, TypeError) as exc:
                row_id = row.get("id") if isinstance(row, dict) else None
                logger.warning("Skipping malformed health event row", error=str(exc), row_id=row_id)

        logger.info(
            "Health events fetched",
            subscription_id=subscription_id,
            start_time=format_timestamp(start_time),
            pages=page,
            event_count=len(events),
        )
        return events

    async def _query_page(self, subscription_id: str, query: str, skip_token: str | None) -> dict[str, Any]:
        options: dict[str, Any] = {"resultFormat": "objectArray", "$top": self.page_size}
        if skip_token:
            options["$skipToken"] = skip_token

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = await self.http_client.post(
                f"{self.base_url}/providers/Microsoft.ResourceGraph/resources",
                params={"api-version": self.api_version},
                json={"subscriptions": [subscription_id], "query": query, "options": options},
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise EventQueryError(f"Resource Graph query timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise EventQueryError(f"Resource Graph request failed: {exc}") from exc

        if response.status_code != 200:
            logger.warning(
                "Resource Graph returned non-200 status",
                status_code=response.status_code,
                subscription_id=subscription_id,
            )
            raise EventQueryError(f"Resource Graph returned {response.status_code}: {response.text[:500]}")

        try:
            data = response.json()
        except ValueError as exc:
            raise EventQueryError("Resource Graph returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise EventQueryError("Resource Graph returned an unexpected payload")
        return data
