"""Declarative mapping from a classification to dashboard widgets and actions.

``select_widgets`` is pure: it sees only the classification, never persisted
state, so a rehydrated incident always yields the same widget set as the
original report did.
"""

from typing import TypedDict

from warroom.analysis.classifier import classify
from warroom.analysis.models import (
    ActionId,
    Classification,
    IncidentAnalysis,
    IncidentType,
    WidgetConfig,
    WidgetSelection,
)

DEFAULT_SLACK_CHANNEL = "#engineering"


class GraphSpec(TypedDict):
    title: str
    color: str
    reason: str


class LogSpec(TypedDict):
    # None scopes the stream to the inferred service (only when one was inferred)
    service_filter: str | None
    reason: str


class DraftSpec(TypedDict):
    channel: str
    template: str
    service_fallback: str
    reason: str


class TypeProfile(TypedDict):
    graph: GraphSpec
    logs: LogSpec | None
    draft: DraftSpec
    actions: list[ActionId]


PROFILES: dict[IncidentType, TypeProfile] = {
    "api_failure": {
        "graph": {"title": "Error Rate (5xx)", "color": "#ef4444", "reason": "Visualize error spike"},
        "logs": {"service_filter": None, "reason": "Show logs for {service}"},
        "draft": {
            "channel": DEFAULT_SLACK_CHANNEL,
            "template": "🚨 *API FAILURE DETECTED*\nService: {service}\nSeverity: {severity}\nInvestigating 500 errors.",
            "service_fallback": "Unknown",
            "reason": "Draft incident alert",
        },
        "actions": ["rollback", "restart"],
    },
    "database_slow": {
        "graph": {"title": "Query Latency (ms)", "color": "#eab308", "reason": "Visualize latency"},
        "logs": {"service_filter": None, "reason": "Show slow query logs"},
        "draft": {
            "channel": DEFAULT_SLACK_CHANNEL,
            "template": "⚠️ *DATABASE ISSUES*\nService: {service}\nSeverity: {severity}\n"
            "High latency detected in read replicas.",
            "service_fallback": "DB",
            "reason": "Draft latency alert",
        },
        "actions": ["enable_cache", "restart"],
    },
    "traffic_spike": {
        "graph": {"title": "Requests/sec", "color": "#3b82f6", "reason": "Visualize traffic volume"},
        "logs": None,
        "draft": {
            "channel": DEFAULT_SLACK_CHANNEL,
            "template": "📈 *TRAFFIC SURGE*\nService: {service}\nSeverity: {severity}\nAuto-scaling trigger imminent.",
            "service_fallback": "Gateway",
            "reason": "Draft scaling alert",
        },
        "actions": ["scale_up", "enable_cache"],
    },
    "security_breach": {
        "graph": {"title": "Blocked Requests", "color": "#a855f7", "reason": "Show blocked malicious traffic"},
        "logs": {"service_filter": "firewall", "reason": "Show security audit logs"},
        "draft": {
            "channel": "#sec-ops",
            "template": "🛡️ *SECURITY ALERT*\nSuspicious activity detected.\nSeverity: {severity}",
            "service_fallback": "Unknown",
            "reason": "Notify SecOps",
        },
        "actions": ["monitor", "restart"],
    },
}


def actions_for(incident_type: IncidentType) -> list[ActionId]:
    """Return the fixed remediation action set for an incident type ([] for unknown)."""
    profile = PROFILES.get(incident_type)
    return list(profile["actions"]) if profile else []


def select_widgets(classification: Classification) -> WidgetSelection:
    """Map a classification to an ordered widget list and remediation actions."""
    widgets: list[WidgetConfig] = [
        WidgetConfig(component_name="IncidentTimeline", reason="Show event history"),
        WidgetConfig(component_name="ServiceHealth", reason="Show overall system status"),
    ]

    profile = PROFILES.get(classification.type)
    if profile is None:
        return WidgetSelection(widgets=widgets, actions=[])

    service = classification.service
    severity = classification.severity.upper()

    graph = profile["graph"]
    widgets.append(
        WidgetConfig(
            component_name="ErrorGraph",
            props={"title": graph["title"], "color": graph["color"]},
            reason=graph["reason"],
        )
    )

    logs = profile["logs"]
    if logs is not None:
        scope = logs["service_filter"] or service
        if scope:
            widgets.append(
                WidgetConfig(
                    component_name="LogStream",
                    props={"serviceFilter": scope},
                    reason=logs["reason"].format(service=scope),
                )
            )

    draft = profile["draft"]
    widgets.append(
        WidgetConfig(
            component_name="SlackDraft",
            props={
                "channel": draft["channel"],
                "draftText": draft["template"].format(
                    service=service or draft["service_fallback"],
                    severity=severity,
                ),
            },
            reason=draft["reason"],
        )
    )

    actions = actions_for(classification.type)
    if actions:
        widgets.append(
            WidgetConfig(
                component_name="ActionButton",
                props={"actions": actions},
                reason="Suggested remediation actions",
            )
        )

    return WidgetSelection(widgets=widgets, actions=actions)


def build_analysis(classification: Classification) -> IncidentAnalysis:
    """Combine a classification with its widget selection."""
    selection = select_widgets(classification)
    return IncidentAnalysis(
        type=classification.type,
        service=classification.service,
        severity=classification.severity,
        widgets=selection.widgets,
        suggested_actions=selection.actions,
    )


def analyze_incident(text: str) -> IncidentAnalysis:
    """Classify free text and select widgets for it."""
    return build_analysis(classify(text))
