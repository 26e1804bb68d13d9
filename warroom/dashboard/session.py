"""One mounted dashboard: store reads, realtime channels, pollers, and the state machine.

A session is mounted once and unmounted once. Mounting loads whatever the
store can give (fail-open), opens the realtime channels, and starts the
polling fallbacks. Unmounting closes every channel, shuts the scheduler down,
and cancels the recovery dwell timer.
"""

import contextlib
import logging
from collections import deque

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from pydantic import BaseModel

from warroom.analysis.models import IncidentAnalysis
from warroom.config import Settings, get_settings
from warroom.dashboard.dispatcher import DispatchContext, RemediationDispatcher
from warroom.dashboard.state import DashboardState, DashboardStateMachine, RecoverySummary
from warroom.dashboard.subscriptions import SubscriptionManager
from warroom.dashboard.transcript import ChatMessage, ChatTranscript, Timeline, TimelineEvent
from warroom.errors import OperationResult, WarRoomError, failed, ok
from warroom.incidents import operations
from warroom.observability.metrics import POLL_FAILURES
from warroom.store.base import IncidentStore
from warroom.store.models import ChangeEvent, ErrorLog, Incident, IncidentEvent, Metric, Service, parse_record, parse_records

logger = logging.getLogger(__name__)

METRIC_HISTORY = 20
LOG_WINDOW = 50
TIMELINE_BACKFILL = 20

TRANSITION_MESSAGES: dict[DashboardState, str] = {
    "ALERT": "🚨 Incident mode engaged.",
    "RECOVERY": "✅ Incident resolved. Monitoring recovery.",
    "HEALTHY": "All systems operational.",
}


class DashboardSnapshot(BaseModel):
    """Serializable view of everything the dashboard renders."""

    state: DashboardState
    incident: Incident | None = None
    analysis: IncidentAnalysis | None = None
    recovery: RecoverySummary | None = None
    services: list[Service]
    logs: list[ErrorLog]
    metric_history: list[Metric]
    timeline: list[TimelineEvent]
    messages: list[ChatMessage]
    store: str
    mounted: bool


class DashboardSession:
    def __init__(self, store: IncidentStore, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.store = store
        self.settings = settings
        self.transcript = ChatTranscript()
        self.timeline = Timeline()
        self.machine = DashboardStateMachine(settings.recovery_dwell_seconds, on_transition=self._on_transition)
        self.dispatcher = RemediationDispatcher(
            store,
            self.transcript,
            self.timeline,
            user=settings.dashboard_user,
            delay_seconds=settings.action_delay_seconds,
        )
        self.subscriptions = SubscriptionManager(store)
        self.services: list[Service] = []
        self.logs: list[ErrorLog] = []
        self.metric_history: deque[Metric] = deque(maxlen=METRIC_HISTORY)
        self._scheduler: AsyncIOScheduler | None = None
        self.mounted = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def mount(self) -> None:
        """Load initial state, open realtime channels, and start pollers."""
        if self.mounted:
            return

        incidents: list[Incident] = []
        try:
            self.services = parse_records(Service, await self.store.query("services", order_by="name", descending=False))
            incidents = parse_records(Incident, await self.store.query("incidents", order_by="started_at"))
            self.logs = parse_records(
                ErrorLog, await self.store.query("error_logs", order_by="created_at", limit=LOG_WINDOW)
            )
            metrics = parse_records(Metric, await self.store.query("metrics", order_by="timestamp", limit=METRIC_HISTORY))
            self.metric_history.extend(reversed(metrics))
        except WarRoomError as e:
            # Render HEALTHY with whatever loaded rather than refusing to mount
            logger.warning("Initial dashboard load failed: %s", e)

        self.machine.hydrate(incidents, self.services)
        await self._backfill_timeline()

        self.subscriptions.open("incidents", self._on_incident_change)
        self.subscriptions.open("incident_events", self._on_event_change)
        self.subscriptions.open("error_logs", self._on_log_change)
        self.subscriptions.open("metrics", self._on_metric_change)

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.poll_incidents,
            "interval",
            seconds=self.settings.incident_poll_seconds,
            id="poll_incidents",
            name="Incident poll",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.poll_services,
            "interval",
            seconds=self.settings.service_poll_seconds,
            id="poll_services",
            name="Service health poll",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.poll_logs,
            "interval",
            seconds=self.settings.log_poll_seconds,
            id="poll_logs",
            name="Error log poll",
            replace_existing=True,
        )
        self._scheduler.start()
        self.mounted = True
        logger.info("Dashboard mounted on %s store (state=%s)", self.store.name, self.machine.state)

    async def unmount(self) -> None:
        """Release every channel and timer this session owns."""
        await self.subscriptions.close_all()
        if self._scheduler is not None:
            with contextlib.suppress(Exception):
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self.machine.close()
        self.mounted = False
        logger.info("Dashboard unmounted")

    async def _backfill_timeline(self) -> None:
        incident = self.machine.incident
        if incident is None:
            return
        try:
            rows = await self.store.query(
                "incident_events", {"incident_id": incident.id}, order_by="created_at", limit=TIMELINE_BACKFILL
            )
        except WarRoomError as e:
            logger.warning("Timeline backfill failed: %s", e)
            return
        for event in reversed(parse_records(IncidentEvent, rows)):
            self.timeline.record(event.event_type, event.description, event.user_id, event_id=event.id)

    # ------------------------------------------------------------------
    # Realtime handlers
    # ------------------------------------------------------------------

    def _on_transition(self, previous: DashboardState, target: DashboardState) -> None:
        self.transcript.add("system", TRANSITION_MESSAGES[target])

    def _on_incident_change(self, event: ChangeEvent) -> None:
        self.machine.handle_incident_change(event)

    def _on_event_change(self, event: ChangeEvent) -> None:
        if event["event_type"] != "insert":
            return
        record = parse_record(IncidentEvent, event.get("new"))
        if record is not None:
            self.timeline.record(record.event_type, record.description, record.user_id, event_id=record.id)

    def _on_log_change(self, event: ChangeEvent) -> None:
        if event["event_type"] == "delete":
            removed_id = (event.get("old") or {}).get("id")
            self.logs = [log for log in self.logs if log.id != removed_id]
            return
        log = parse_record(ErrorLog, event.get("new"))
        if log is None:
            return
        others = [existing for existing in self.logs if existing.id != log.id]
        self.logs = [log, *others][:LOG_WINDOW]

    def _on_metric_change(self, event: ChangeEvent) -> None:
        if event["event_type"] != "insert":
            return
        metric = parse_record(Metric, event.get("new"))
        if metric is not None and all(m.id != metric.id for m in self.metric_history):
            self.metric_history.append(metric)

    # ------------------------------------------------------------------
    # Polling fallbacks
    # ------------------------------------------------------------------

    async def poll_incidents(self) -> None:
        """Pick up incidents written by other processes, which publish no change events here."""
        try:
            rows = await self.store.query("incidents", order_by="started_at")
        except WarRoomError as e:
            POLL_FAILURES.labels(poller="incidents").inc()
            logger.debug("Incident poll failed, retrying next interval: %s", e)
            return
        incidents = parse_records(Incident, rows)
        if any(self.machine.service_name(i.service_id) is None for i in incidents if i.status == "active"):
            await self.poll_services()
        self.machine.reconcile(incidents)

    async def poll_services(self) -> None:
        try:
            rows = await self.store.query("services", order_by="name", descending=False)
        except WarRoomError as e:
            POLL_FAILURES.labels(poller="services").inc()
            logger.debug("Service poll failed, retrying next interval: %s", e)
            return
        self.services = parse_records(Service, rows)
        for service in self.services:
            self.machine.upsert_service(service)

    async def poll_logs(self) -> None:
        try:
            rows = await self.store.query("error_logs", order_by="created_at", limit=LOG_WINDOW)
        except WarRoomError as e:
            POLL_FAILURES.labels(poller="logs").inc()
            logger.debug("Log poll failed, retrying next interval: %s", e)
            return
        self.logs = parse_records(ErrorLog, rows)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def submit_report(self, text: str) -> operations.DetectResult:
        """Record a chat report and open an incident for it."""
        text = text.strip()
        if not text:
            return operations.DetectResult(success=False, message="Empty report", error="Empty report")

        self.transcript.user(text)
        result = await operations.detect_incident(self.store, text)
        if not result["success"]:
            logger.error("Analysis error: %s", result.get("error"))
            self.transcript.assistant("⚠️ Error analyzing input. Check the server logs.")
            return result

        incident = result["incident"]
        analysis = result["analysis"]
        record = result.get("service")
        if record is not None:
            self.machine.upsert_service(record)
        self.machine.report_created(incident, analysis)
        service = analysis.service or "an unknown service"
        self.transcript.assistant(
            f"Classified as {analysis.type} on {service} ({analysis.severity.upper()}). "
            f"Suggested actions: {', '.join(analysis.suggested_actions) or 'none'}."
        )
        return result

    async def run_action(self, action_id: str) -> OperationResult:
        context = DispatchContext()
        incident = self.machine.incident
        if incident is not None:
            context["incident_id"] = incident.id
        if self.machine.analysis is not None and self.machine.analysis.service:
            context["service"] = self.machine.analysis.service
        return await self.dispatcher.dispatch(action_id, context)

    def post_slack_draft(self, channel: str, text: str) -> OperationResult:
        """Simulated Slack post; records the update locally."""
        if not channel or not text:
            return failed("Missing channel or text")
        self.timeline.record("action", f"Posted update to {channel}", self.settings.dashboard_user)
        message = f"✅ Posted to Slack {channel}"
        self.transcript.assistant(message)
        logger.info("Slack post to %s (%d chars)", channel, len(text))
        return ok(message)

    async def trigger_demo_incident(self) -> operations.TriggerResult:
        result = await operations.trigger_demo_incident(self.store)
        await self._adopt_triggered(result)
        return result

    async def trigger_traffic_spike(self) -> operations.TriggerResult:
        result = await operations.trigger_traffic_spike(self.store)
        await self._adopt_triggered(result)
        return result

    async def _adopt_triggered(self, result: operations.TriggerResult) -> None:
        if not result["success"]:
            self.transcript.assistant(f"❌ {result['message']}")
            return
        self.transcript.assistant(f"✅ {result['message']}")
        try:
            rows = await self.store.query("incidents", {"id": result["incident_id"]}, limit=1)
        except WarRoomError as e:
            # The incidents channel or the next load will pick it up
            logger.warning("Could not read back triggered incident: %s", e)
            return
        incident = parse_record(Incident, rows[0]) if rows else None
        if incident is not None:
            await self.poll_services()
            self.machine.report_created(incident)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def snapshot(self) -> DashboardSnapshot:
        return DashboardSnapshot(
            state=self.machine.state,
            incident=self.machine.incident,
            analysis=self.machine.analysis,
            recovery=self.machine.recovery_summary(),
            services=self.services,
            logs=self.logs,
            metric_history=list(self.metric_history),
            timeline=self.timeline.events,
            messages=self.transcript.messages,
            store=self.store.name,
            mounted=self.mounted,
        )
