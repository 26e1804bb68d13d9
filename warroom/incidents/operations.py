"""Incident operations composed from store primitives.

None of these flows is atomic: each store call is its own round trip, so a
failure part-way leaves earlier writes committed. Secondary writes (event
log rows, service status) are logged and skipped when they fail; the
caller only sees failure when the primary write did not happen.

Helpers used by the dashboard (detect, resolve, rollback, triggers) return
result dicts and never raise. ``remediate`` and ``disconnect_service`` back
HTTP routes and raise typed errors for the API layer to map.
"""

import logging
import random
from datetime import UTC, datetime, timedelta
from typing import NotRequired

from warroom.analysis.classifier import classify
from warroom.analysis.models import IncidentAnalysis
from warroom.analysis.widgets import build_analysis
from warroom.errors import (
    NotFoundError,
    OperationResult,
    StoreMutationError,
    ValidationFailedError,
    WarRoomError,
    failed,
    ok,
)
from warroom.observability.metrics import INCIDENTS_DETECTED
from warroom.store.base import IncidentStore
from warroom.store.models import Incident, Service, ServiceStatus, parse_record, parse_records

logger = logging.getLogger(__name__)

UNKNOWN_SERVICE = "unknown-service"
SYSTEM_USER = "system-monitor"
REMEDIATION_USER = "commander"
TRAFFIC_SERVICE = "frontend-cdn"


class DetectResult(OperationResult):
    incident: NotRequired[Incident]
    service: NotRequired[Service]
    analysis: NotRequired[IncidentAnalysis]


class TriggerResult(OperationResult):
    incident_id: NotRequired[str]


class RemediationResult(OperationResult):
    resolved_count: NotRequired[int]
    purged_count: NotRequired[int]


class DisconnectResult(OperationResult):
    removed_incidents: NotRequired[int]


class IncidentSummary(Incident):
    service_name: str = "Unknown Service"


def _now() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


async def get_or_create_service(store: IncidentStore, name: str, status: ServiceStatus = "healthy") -> Service:
    """Return the service with this unique name, creating it if absent."""
    rows = await store.query("services", {"name": name}, limit=1)
    existing = parse_record(Service, rows[0]) if rows else None
    if existing is not None:
        return existing

    created = parse_record(Service, await store.insert("services", {"name": name, "status": status}))
    if created is None:
        msg = f"Could not resolve service '{name}'"
        raise StoreMutationError(msg)
    logger.info("Created service %s (%s)", name, created.id)
    return created


async def _set_service_status(store: IncidentStore, service_id: str | None, status: ServiceStatus) -> None:
    if not service_id:
        return
    try:
        await store.update("services", {"id": service_id}, {"status": status})
    except WarRoomError:
        logger.warning("Failed to set service %s to %s", service_id, status, exc_info=True)


async def _log_event(
    store: IncidentStore,
    incident_id: str,
    event_type: str,
    description: str,
    user_id: str,
    metadata: dict[str, object] | None = None,
) -> None:
    row: dict[str, object] = {
        "incident_id": incident_id,
        "event_type": event_type,
        "description": description,
        "user_id": user_id,
    }
    if metadata is not None:
        row["metadata"] = metadata
    try:
        await store.insert("incident_events", row)
    except WarRoomError:
        logger.warning("Failed to log %s event for incident %s", event_type, incident_id, exc_info=True)


# ---------------------------------------------------------------------------
# Detection and resolution
# ---------------------------------------------------------------------------


async def detect_incident(store: IncidentStore, message: str) -> DetectResult:
    """Classify a user report and record it as an active incident."""
    classification = classify(message)
    analysis = build_analysis(classification)
    service_status: ServiceStatus = "down" if classification.severity == "critical" else "degraded"

    try:
        service = await get_or_create_service(store, classification.service or UNKNOWN_SERVICE, service_status)
        row = await store.insert(
            "incidents",
            {
                "service_id": service.id,
                "type": classification.type,
                "severity": classification.severity,
                "status": "active",
                "description": message,
                "started_at": _now(),
            },
        )
    except WarRoomError as e:
        logger.warning("Failed to detect incident: %s", e)
        return DetectResult(success=False, message="Failed to process query", error=str(e))

    incident = parse_record(Incident, row)
    if incident is None:
        return DetectResult(success=False, message="Failed to process query", error="Malformed incident row")

    await _log_event(
        store,
        incident.id,
        "detected",
        f'Incident detected via user report: "{message}"',
        SYSTEM_USER,
        metadata={"raw_message": message},
    )
    await _set_service_status(store, service.id, service_status)

    INCIDENTS_DETECTED.labels(type=incident.type, severity=incident.severity).inc()
    logger.info("Detected %s incident %s (%s)", incident.type, incident.id, incident.severity)
    return DetectResult(
        success=True,
        message=f"{incident.type} incident opened for {service.name} ({incident.severity})",
        incident=incident,
        service=service,
        analysis=analysis,
    )


async def resolve_incident(store: IncidentStore, incident_id: str, resolution: str) -> OperationResult:
    """Mark one incident resolved, log the recovery, and return its service to healthy."""
    try:
        rows = await store.update("incidents", {"id": incident_id}, {"status": "resolved", "resolved_at": _now()})
    except WarRoomError as e:
        logger.warning("Failed to resolve incident %s: %s", incident_id, e)
        return failed(str(e), "Failed to resolve incident")

    incident = parse_record(Incident, rows[0]) if rows else None
    if incident is None:
        return failed(f"Incident {incident_id} not found", "Failed to resolve incident")

    await _log_event(store, incident.id, "resolved", resolution, SYSTEM_USER)
    await _set_service_status(store, incident.service_id, "healthy")
    return ok(f"Incident {incident.id} resolved")


async def find_active_incident(store: IncidentStore) -> Incident | None:
    """Return the active incident with the most recent start time, if any."""
    rows = await store.query("incidents", {"status": "active"}, order_by="started_at", descending=True)
    incidents = parse_records(Incident, rows)
    return incidents[0] if incidents else None


async def initiate_rollback(store: IncidentStore) -> OperationResult:
    """Resolve the current active incident through the store-side procedure."""
    try:
        incident = await find_active_incident(store)
        if incident is None:
            return failed("No active incidents to rollback.")
        await store.resolve_incident(incident.id)
    except WarRoomError as e:
        logger.error("Rollback failed: %s", e)
        return failed(str(e), f"Rollback failed: {e}")
    return ok("Rollback successful. Service recovering.")


async def list_incidents(store: IncidentStore, limit: int | None = None) -> list[IncidentSummary]:
    """Incidents newest first, with their service names joined in."""
    incident_rows = await store.query("incidents", order_by="started_at", descending=True, limit=limit)
    services = {s.id: s.name for s in parse_records(Service, await store.query("services"))}
    summaries: list[IncidentSummary] = []
    for incident in parse_records(Incident, incident_rows):
        name = services.get(incident.service_id or "", "Unknown Service")
        summaries.append(IncidentSummary(**incident.model_dump(), service_name=name))
    return summaries


# ---------------------------------------------------------------------------
# Route-level operations
# ---------------------------------------------------------------------------


async def remediate(store: IncidentStore, action: str, incident_id: str | None = None) -> RemediationResult:
    """Run a server-side remediation.

    ``clear_logs`` purges every error log row. ``resolve`` resolves the given
    active incident, or all active incidents when no id is given.

    Raises:
        ValidationFailedError: Unknown or missing action.
        StoreMutationError: The store rejected the primary write.
    """
    if not action:
        msg = "Missing action"
        raise ValidationFailedError(msg)

    if action == "clear_logs":
        purged = await store.delete("error_logs", {})
        logger.info("Purged %d error log rows", purged)
        return RemediationResult(success=True, message="All error logs purged.", purged_count=purged)

    if action == "resolve":
        filters: dict[str, object] = {"status": "active"}
        if incident_id:
            filters["id"] = incident_id
        rows = await store.update("incidents", filters, {"status": "resolved", "resolved_at": _now()})
        for incident in parse_records(Incident, rows):
            await _log_event(
                store,
                incident.id,
                "resolved",
                "✅ Incident resolved via Remediation Action.",
                REMEDIATION_USER,
            )
        return RemediationResult(
            success=True,
            message=f"Resolved {len(rows)} active incidents.",
            resolved_count=len(rows),
        )

    msg = "Invalid action"
    raise ValidationFailedError(msg)


async def disconnect_service(store: IncidentStore, service_id: str) -> DisconnectResult:
    """Delete a service and every incident recorded against it.

    Raises:
        ValidationFailedError: Missing service id.
        NotFoundError: No service with this id.
        StoreMutationError: The service row could not be deleted.
    """
    if not service_id:
        msg = "Missing serviceId"
        raise ValidationFailedError(msg)

    rows = await store.query("services", {"id": service_id}, limit=1)
    service = parse_record(Service, rows[0]) if rows else None
    if service is None:
        msg = "Service not found"
        raise NotFoundError(msg)

    removed = 0
    try:
        removed = await store.delete("incidents", {"service_id": service_id})
    except StoreMutationError:
        # Keep going: the service delete below is what the caller asked for
        logger.exception("Failed to clear incidents for service %s", service_id)

    await store.delete("services", {"id": service_id})
    logger.info("Disconnected service %s (%d incidents removed)", service.name, removed)
    return DisconnectResult(
        success=True,
        message=f'Service "{service.name}" disconnected successfully',
        removed_incidents=removed,
    )


# ---------------------------------------------------------------------------
# Demo triggers
# ---------------------------------------------------------------------------


async def trigger_demo_incident(store: IncidentStore) -> TriggerResult:
    """Run the store-side payment failure simulation."""
    try:
        incident_id = await store.simulate_payment_incident()
    except WarRoomError as e:
        logger.error("Failed to trigger demo: %s", e)
        return TriggerResult(success=False, message="Failed to trigger demo incident", error=str(e))
    INCIDENTS_DETECTED.labels(type="api_failure", severity="critical").inc()
    return TriggerResult(success=True, message="Demo incident triggered", incident_id=incident_id)


async def trigger_traffic_spike(store: IncidentStore) -> TriggerResult:
    """Seed a critical traffic surge on the CDN with metrics and logs."""
    try:
        service = await get_or_create_service(store, TRAFFIC_SERVICE)
        row = await store.insert(
            "incidents",
            {
                "service_id": service.id,
                "type": "traffic_spike",
                "severity": "critical",
                "status": "active",
                "description": "API Gateway Overload: >5000 req/sec detected",
                "started_at": _now(),
            },
        )
    except WarRoomError as e:
        logger.error("Failed to trigger traffic spike: %s", e)
        return TriggerResult(success=False, message="Failed to trigger traffic spike", error=str(e))

    incident_id = str(row["id"])
    await _log_event(
        store,
        incident_id,
        "detected",
        "Traffic anomaly detected: 500% surge in traffic (5k+ req/s)",
        SYSTEM_USER,
    )

    now = datetime.now(UTC)
    try:
        await store.insert_many(
            "metrics",
            [
                {
                    "service_id": service.id,
                    "metric_type": "request_count",
                    "value": 4500 + random.randint(0, 999),
                    "timestamp": (now - timedelta(minutes=4 - i)).isoformat(),
                }
                for i in range(5)
            ],
        )
        await store.insert_many(
            "error_logs",
            [
                {
                    "service_id": service.id,
                    "incident_id": incident_id,
                    "severity": "warn",
                    "message": "Rate limit exceeded for 45 IP addresses",
                },
                {
                    "service_id": service.id,
                    "incident_id": incident_id,
                    "severity": "error",
                    "message": "Load Balancer CPU utilization > 90%",
                },
                {
                    "service_id": service.id,
                    "incident_id": incident_id,
                    "severity": "error",
                    "message": "Upstream timeout: Payment API unrelated to load",
                },
            ],
        )
    except WarRoomError:
        logger.warning("Failed to seed traffic spike observations", exc_info=True)

    await _set_service_status(store, service.id, "degraded")
    INCIDENTS_DETECTED.labels(type="traffic_spike", severity="critical").inc()
    return TriggerResult(success=True, message="Traffic load test initiated.", incident_id=incident_id)
