from __future__ import annotations

from enum import Enum as PyEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class EventType(str, PyEnum):
    SERVICE_ISSUE = "ServiceIssue"
    PLANNED_MAINTENANCE = "PlannedMaintenance"


class EventStatus(str, PyEnum):
    ACTIVE = "Active"
    RESOLVED = "Resolved"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ImpactRecord(CamelModel):
    impacted_service: str | None = None
    impacted_regions: list[str] = Field(default_factory=list)


class HealthEvent(CamelModel):
    """A single service health event as returned by the event source.

    ``event_type`` and ``status`` stay plain strings because the feed adds new
    values over time; ``EventType`` and ``EventStatus`` name the ones the
    dashboard cares about. ``last_update_time`` is kept as the raw string and
    parsed where it is used, so one malformed value never rejects the event.
    """

    id: str | None = None
    tracking_id: str | None = None
    event_type: str | None = None
    status: str | None = None
    title: str | None = None
    summary: str | None = None
    level: str | None = None
    impact_start_time: str | None = None
    impact_mitigation_time: str | None = None
    impacted_services: list[ImpactRecord] = Field(default_factory=list)
    last_update_time: str | None = None

    @field_validator("id", "tracking_id", mode="before")
    @classmethod
    def blank_to_none(cls, value: object):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("impacted_services", mode="before")
    @classmethod
    def none_to_empty(cls, value: object):
        return [] if value is None else value


class CacheSnapshot(CamelModel):
    subscription_id: str
    cached_at: str
    last_event_time: str | None = None
    tracking_ids: list[str] = Field(default_factory=list)
    events: list[HealthEvent] = Field(default_factory=list)

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")
