"""Prometheus metric definitions for war room self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

REQUEST_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0)

# ---------------------------------------------------------------------------
# Request-level metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "warroom_request_duration_seconds",
    "End-to-end request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "warroom_requests_total",
    "Total number of requests",
    labelnames=["endpoint", "status"],
)

# ---------------------------------------------------------------------------
# Incident lifecycle metrics
# ---------------------------------------------------------------------------

INCIDENTS_DETECTED = Counter(
    "warroom_incidents_detected_total",
    "Incidents created from user reports or demo triggers",
    labelnames=["type", "severity"],
)

REMEDIATIONS_TOTAL = Counter(
    "warroom_remediations_total",
    "Remediation actions dispatched",
    labelnames=["action", "status"],
)

# ---------------------------------------------------------------------------
# Dashboard metrics
# ---------------------------------------------------------------------------

DASHBOARD_TRANSITIONS = Counter(
    "warroom_dashboard_transitions_total",
    "Dashboard state machine transitions",
    labelnames=["from_state", "to_state"],
)

REALTIME_EVENTS = Counter(
    "warroom_realtime_events_total",
    "Change notifications received from the incident store",
    labelnames=["table", "event_type"],
)

POLL_FAILURES = Counter(
    "warroom_poll_failures_total",
    "Background polling cycles that failed and will retry",
    labelnames=["poller"],
)

# ---------------------------------------------------------------------------
# Health / info metrics
# ---------------------------------------------------------------------------

COMPONENT_HEALTHY = Gauge(
    "warroom_component_healthy",
    "Whether a dependency component is healthy (1=healthy, 0=unhealthy)",
    labelnames=["component"],
)

APP_INFO = Info(
    "warroom",
    "War room build information",
)
