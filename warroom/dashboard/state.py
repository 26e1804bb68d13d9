"""Dashboard state machine: HEALTHY -> ALERT -> RECOVERY -> HEALTHY.

State is derived from incident records, never assumed. Every notification is
applied as an idempotent upsert into an id-keyed cache before any transition
is considered, so the same fact arriving twice (realtime plus polling, or a
local report plus its own insert notification) never transitions twice.

Transitions:
  * an active incident (insert, update, or local report) -> ALERT, replacing
    whatever incident was displayed (last writer wins)
  * the displayed incident updated to resolved -> RECOVERY
  * RECOVERY held for the dwell time with no new active incident -> HEALTHY
  * the displayed incident deleted -> HEALTHY

Handlers must run inside the event loop; the RECOVERY dwell is a loop timer.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from warroom.analysis.models import Classification, IncidentAnalysis
from warroom.analysis.widgets import build_analysis
from warroom.incidents.operations import UNKNOWN_SERVICE
from warroom.observability.metrics import DASHBOARD_TRANSITIONS
from warroom.store.models import ChangeEvent, Incident, Service, parse_record

logger = logging.getLogger(__name__)

DashboardState = Literal["HEALTHY", "ALERT", "RECOVERY"]
TransitionCallback = Callable[[DashboardState, DashboardState], None]


class RecoverySummary(BaseModel):
    """Post-incident summary shown while in RECOVERY."""

    incident_id: str
    type: str
    severity: str
    service: str | None
    description: str
    started_at: str
    resolved_at: str | None
    duration_seconds: float | None


def _duration(started_at: str, resolved_at: str | None) -> float | None:
    if not resolved_at:
        return None
    try:
        return (datetime.fromisoformat(resolved_at) - datetime.fromisoformat(started_at)).total_seconds()
    except ValueError:
        return None


class DashboardStateMachine:
    def __init__(self, dwell_seconds: float = 8.0, on_transition: TransitionCallback | None = None) -> None:
        self.dwell_seconds = dwell_seconds
        self.state: DashboardState = "HEALTHY"
        self.incident: Incident | None = None
        self.analysis: IncidentAnalysis | None = None
        self._on_transition = on_transition
        self._incidents: dict[str, Incident] = {}
        self._services: dict[str, Service] = {}
        self._analyses: dict[str, IncidentAnalysis] = {}
        self._dwell: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def hydrate(self, incidents: Iterable[Incident], services: Iterable[Service] = ()) -> None:
        """Seed caches from an initial store read and derive the starting state."""
        for service in services:
            self._services[service.id] = service
        for incident in incidents:
            self._incidents[incident.id] = incident
        active = self.active_incidents()
        if active:
            self._show(active[0])

    def report_created(self, incident: Incident, analysis: IncidentAnalysis | None = None) -> None:
        """A locally submitted report produced this incident.

        ``analysis`` is the classification computed from the report text; when
        given it is kept for this incident instead of being rebuilt from cached
        service names.
        """
        if analysis is not None:
            self._analyses[incident.id] = analysis
        cached = self._incidents.get(incident.id)
        if cached is not None and cached.status != "active":
            # Already resolved by a notification that beat us here
            return
        self._incidents[incident.id] = incident
        if incident.status == "active":
            self._show(incident)

    def upsert_service(self, service: Service) -> None:
        self._services[service.id] = service
        if self.incident is not None and self.incident.service_id == service.id and self.state == "ALERT":
            self.analysis = self._analyze(self.incident)

    def handle_incident_change(self, event: ChangeEvent) -> None:
        """Apply one realtime notification from the incidents channel."""
        event_type = event["event_type"]

        if event_type == "delete":
            incident_id = (event.get("old") or {}).get("id")
            if incident_id is None:
                return
            self._incidents.pop(incident_id, None)
            self._analyses.pop(incident_id, None)
            if self.incident is not None and self.incident.id == incident_id:
                logger.info("Displayed incident %s was deleted", incident_id)
                self._clear()
            return

        incident = parse_record(Incident, event.get("new"))
        if incident is None:
            return

        if event_type == "insert":
            if incident.id in self._incidents:
                return
            self._incidents[incident.id] = incident
            if incident.status == "active":
                self._show(incident)
            return

        self._incidents[incident.id] = incident
        displayed = self.incident is not None and self.incident.id == incident.id

        if incident.status == "active":
            self._show(incident)
        elif incident.status == "resolved":
            if displayed and self.state == "ALERT":
                self._enter_recovery(incident)
        elif displayed:
            # "resolving": keep the alert up with the fresher record
            self.incident = incident

    def reconcile(self, incidents: Iterable[Incident]) -> None:
        """Fold a polled read of the incidents table into the cache.

        Rows identical to the cached record are skipped, and a polled active
        row never reopens an incident already cached as resolved, since the
        read may predate a notification that has since been applied. Rows are
        applied oldest start first so the newest active incident ends up
        displayed.
        """
        for incident in sorted(incidents, key=lambda i: i.started_at):
            cached = self._incidents.get(incident.id)
            if cached == incident:
                continue
            if cached is not None and cached.status == "resolved" and incident.status != "resolved":
                continue
            event_type = "insert" if cached is None else "update"
            self.handle_incident_change(
                ChangeEvent(table="incidents", event_type=event_type, new=incident.model_dump())
            )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def active_incidents(self) -> list[Incident]:
        """Cached active incidents, most recent start first."""
        active = [i for i in self._incidents.values() if i.status == "active"]
        return sorted(active, key=lambda i: i.started_at, reverse=True)

    def service_name(self, service_id: str | None) -> str | None:
        service = self._services.get(service_id or "")
        return service.name if service else None

    def recovery_summary(self) -> RecoverySummary | None:
        if self.state != "RECOVERY" or self.incident is None:
            return None
        incident = self.incident
        return RecoverySummary(
            incident_id=incident.id,
            type=incident.type,
            severity=incident.severity,
            service=self.service_name(incident.service_id),
            description=incident.description,
            started_at=incident.started_at,
            resolved_at=incident.resolved_at,
            duration_seconds=_duration(incident.started_at, incident.resolved_at),
        )

    def close(self) -> None:
        self._cancel_dwell()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _analyze(self, incident: Incident) -> IncidentAnalysis:
        reported = self._analyses.get(incident.id)
        if reported is not None:
            return reported
        service = self.service_name(incident.service_id)
        classification = Classification(
            type=incident.type,
            # Reports with no inferred service are filed under a placeholder row
            service=None if service == UNKNOWN_SERVICE else service,
            severity=incident.severity,
        )
        return build_analysis(classification)

    def _show(self, incident: Incident) -> None:
        if self.incident is not None and self.incident.id != incident.id and self.state == "ALERT":
            logger.info("Replacing displayed incident %s with %s", self.incident.id, incident.id)
        self._cancel_dwell()
        self.incident = incident
        self.analysis = self._analyze(incident)
        self._transition("ALERT")

    def _enter_recovery(self, incident: Incident) -> None:
        self.incident = incident
        self._transition("RECOVERY")
        self._cancel_dwell()
        self._dwell = asyncio.get_running_loop().call_later(self.dwell_seconds, self._finish_recovery)

    def _finish_recovery(self) -> None:
        self._dwell = None
        if self.state == "RECOVERY":
            self._clear()

    def _clear(self) -> None:
        self._cancel_dwell()
        self.incident = None
        self.analysis = None
        self._transition("HEALTHY")

    def _cancel_dwell(self) -> None:
        if self._dwell is not None:
            self._dwell.cancel()
            self._dwell = None

    def _transition(self, target: DashboardState) -> None:
        previous = self.state
        if previous == target:
            return
        self.state = target
        DASHBOARD_TRANSITIONS.labels(from_state=previous, to_state=target).inc()
        logger.info("Dashboard %s -> %s", previous, target)
        if self._on_transition is not None:
            self._on_transition(previous, target)
