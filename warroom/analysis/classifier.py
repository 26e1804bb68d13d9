"""Keyword classifier for free-text incident reports.

Three independent ordered rule sets (type, service, severity) are evaluated
against the lower-cased text. Within a rule set the first matching rule wins,
so rule order is the tie-break. The function never raises: unrecognized text
falls back to ``unknown`` / no service / ``medium``.
"""

import re

from warroom.analysis.models import Classification, IncidentType, Severity

TYPE_RULES: tuple[tuple[re.Pattern[str], IncidentType], ...] = (
    (re.compile(r"500 error|failing|down|status code|5xx"), "api_failure"),
    (re.compile(r"slow|timeout|latency|queries|stuck"), "database_slow"),
    (re.compile(r"traffic|spike|overload|capacity|limit"), "traffic_spike"),
    (re.compile(r"security|breach|ddos|attack|hacker"), "security_breach"),
)

SERVICE_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"payment|checkout|stripe"), "payment-service"),
    (re.compile(r"auth|login|user|session"), "auth-service"),
    (re.compile(r"db|database|postgres|sql"), "postgres-primary"),
    (re.compile(r"frontend|ui|web|cdn"), "frontend-cdn"),
)

# Critical terms override high-severity terms, which override low-severity terms.
SEVERITY_RULES: tuple[tuple[re.Pattern[str], Severity], ...] = (
    (re.compile(r"critical|down|outage|all users"), "critical"),
    (re.compile(r"intermittent|some users|high"), "high"),
    (re.compile(r"low|minor|warning"), "low"),
)

DEFAULT_SEVERITY: Severity = "medium"


def classify(text: str) -> Classification:
    """Classify an incident report into type, inferred service, and severity."""
    lowered = (text or "").lower()
    incident_type: IncidentType = next((t for p, t in TYPE_RULES if p.search(lowered)), "unknown")
    service = next((s for p, s in SERVICE_RULES if p.search(lowered)), None)
    severity: Severity = next((s for p, s in SEVERITY_RULES if p.search(lowered)), DEFAULT_SEVERITY)
    return Classification(type=incident_type, service=service, severity=severity)
