"""Tests for the Resource Graph health event client."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from app.services.event_source import EventQueryError, EventSourceClient, build_query, parse_event_row

START = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def graph_row(**overrides) -> dict:
    row = {
        "id": "/subscriptions/sub-1/providers/Microsoft.ResourceHealth/events/ABC-123",
        "trackingId": "ABC-123",
        "eventType": "ServiceIssue",
        "status": "Active",
        "title": "Storage degradation",
        "summary": "<p>Investigating</p>",
        "level": "Warning",
        "impactStartTime": "2024-05-01T09:00:00Z",
        "impactMitigationTime": None,
        "lastUpdateTime": "2024-05-01T10:05:00.0000000Z",
        "impactedServices": [
            {
                "ImpactedService": "Storage",
                "ImpactedRegions": [{"ImpactedRegion": "West Europe"}, {"ImpactedRegion": "North Europe"}],
            }
        ],
    }
    row.update(overrides)
    return row


def make_client(handler, test_settings) -> EventSourceClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EventSourceClient(http_client, test_settings)


def test_build_query_filters_on_active_or_recent():
    query = build_query(START)
    assert "ServiceHealthResources" in query
    assert "status =~ 'Active' or lastUpdateTime >= datetime(2024-05-01T10:00:00Z)" in query


def test_parse_event_row_normalizes_impact():
    event = parse_event_row(graph_row())

    assert event.tracking_id == "ABC-123"
    assert event.impacted_services[0].impacted_service == "Storage"
    assert event.impacted_services[0].impacted_regions == ["West Europe", "North Europe"]


def test_parse_event_row_treats_blank_tracking_id_as_missing():
    event = parse_event_row(graph_row(trackingId="", impactedServices=None))

    assert event.tracking_id is None
    assert event.impacted_services == []


@pytest.mark.anyio("asyncio")
async def test_fetch_posts_query_and_parses_rows(test_settings):
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"totalRecords": 1, "count": 1, "data": [graph_row()]})

    client = make_client(handler, test_settings)
    events = await client.fetch("sub-1", START)

    assert [event.tracking_id for event in events] == ["ABC-123"]
    request = captured[0]
    assert request.method == "POST"
    assert request.url.path == "/providers/Microsoft.ResourceGraph/resources"
    assert request.url.params["api-version"] == "2022-10-01"
    assert request.headers["Authorization"] == "Bearer test-token"
    body = json.loads(request.content)
    assert body["subscriptions"] == ["sub-1"]
    assert body["options"]["resultFormat"] == "objectArray"
    assert "datetime(2024-05-01T10:00:00Z)" in body["query"]


@pytest.mark.anyio("asyncio")
async def test_fetch_follows_skip_token(test_settings):
    pages = [
        {"data": [graph_row(trackingId="A")], "$skipToken": "page-2"},
        {"data": [graph_row(trackingId="B")]},
    ]
    tokens: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        tokens.append(json.loads(request.content)["options"].get("$skipToken"))
        return httpx.Response(200, json=pages[len(tokens) - 1])

    client = make_client(handler, test_settings)
    events = await client.fetch("sub-1", START)

    assert [event.tracking_id for event in events] == ["A", "B"]
    assert tokens == [None, "page-2"]


@pytest.mark.anyio("asyncio")
async def test_fetch_skips_malformed_rows(test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [graph_row(title={"nested": True}), graph_row(trackingId="OK")]})

    client = make_client(handler, test_settings)
    events = await client.fetch("sub-1", START)

    assert [event.tracking_id for event in events] == ["OK"]


@pytest.mark.anyio("asyncio")
async def test_fetch_raises_on_error_status(test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": {"code": "AuthorizationFailed"}})

    client = make_client(handler, test_settings)

    with pytest.raises(EventQueryError, match="403"):
        await client.fetch("sub-1", START)


@pytest.mark.anyio("asyncio")
async def test_fetch_raises_on_transport_failure(test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler, test_settings)

    with pytest.raises(EventQueryError):
        await client.fetch("sub-1", START)


@pytest.mark.anyio("asyncio")
async def test_fetch_raises_on_malformed_payload(test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>gateway</html>")

    client = make_client(handler, test_settings)

    with pytest.raises(EventQueryError):
        await client.fetch("sub-1", START)
