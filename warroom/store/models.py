"""Typed records for incident store rows.

Rows arrive from the store as loosely-typed dicts. ``parse_record`` is the
boundary: it validates a row into a model and returns None (logging the
mismatch) instead of letting malformed fields reach business logic.
"""

import logging
from typing import Any, Literal, NotRequired, TypedDict, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from warroom.analysis.models import IncidentType, Severity

logger = logging.getLogger(__name__)

ServiceStatus = Literal["healthy", "degraded", "down", "unknown"]
IncidentStatus = Literal["active", "resolving", "resolved"]
EventType = Literal["detected", "resolved", "action"]
LogSeverity = Literal["error", "warn", "info"]
ChangeType = Literal["insert", "update", "delete"]

TABLES = ("services", "incidents", "incident_events", "metrics", "error_logs")

Row = dict[str, Any]


class Record(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Service(Record):
    id: str
    name: str
    status: ServiceStatus = "healthy"
    latency_ms: float | None = None
    uptime_percent: float | None = None


class Incident(Record):
    id: str
    service_id: str | None = None
    type: IncidentType = "unknown"
    severity: Severity
    status: IncidentStatus
    description: str = ""
    started_at: str  # ISO 8601
    resolved_at: str | None = None


class IncidentEvent(Record):
    id: str
    incident_id: str
    event_type: EventType
    description: str
    user_id: str
    metadata: dict[str, Any] | None = None
    created_at: str | None = None


class Metric(Record):
    id: str
    service_id: str
    metric_type: str
    value: float
    timestamp: str


class ErrorLog(Record):
    id: str
    service_id: str
    incident_id: str | None = None
    severity: LogSeverity = "error"
    message: str
    created_at: str


M = TypeVar("M", bound=Record)


class ChangeEvent(TypedDict):
    table: str
    event_type: ChangeType
    old: NotRequired[Row | None]
    new: NotRequired[Row | None]


def parse_record(model: type[M], row: Row | None) -> M | None:
    """Validate a raw store row, returning None on schema mismatch."""
    if row is None:
        return None
    try:
        return model.model_validate(row)
    except ValidationError as e:
        logger.warning("Skipping malformed %s row %r: %s", model.__name__, row.get("id"), e.errors()[:3])
        return None


def parse_records(model: type[M], rows: list[Row]) -> list[M]:
    """Validate many rows, dropping the malformed ones."""
    parsed = (parse_record(model, row) for row in rows)
    return [r for r in parsed if r is not None]
