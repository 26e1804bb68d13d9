"""Pydantic models for incident classification and dashboard widgets."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

IncidentType = Literal["api_failure", "database_slow", "traffic_spike", "security_breach", "unknown"]
Severity = Literal["critical", "high", "medium", "low"]
WidgetName = Literal["IncidentTimeline", "ServiceHealth", "ErrorGraph", "LogStream", "SlackDraft", "ActionButton"]
ActionId = Literal["rollback", "restart", "scale_up", "enable_cache", "monitor"]


class Classification(BaseModel):
    """The (type, service, severity) triple derived from free text."""

    model_config = ConfigDict(frozen=True)

    type: IncidentType = "unknown"
    service: str | None = None
    severity: Severity = "medium"


class WidgetConfig(BaseModel):
    """A named, parameterized dashboard panel. Recomputed per classification, never stored."""

    model_config = ConfigDict(populate_by_name=True)

    component_name: WidgetName = Field(alias="componentName")
    props: dict[str, Any] = Field(default_factory=dict)
    reason: str


class WidgetSelection(BaseModel):
    widgets: list[WidgetConfig]
    actions: list[ActionId]


class IncidentAnalysis(BaseModel):
    """Classification plus the widgets and remediation actions selected for it."""

    model_config = ConfigDict(populate_by_name=True)

    type: IncidentType
    service: str | None = None
    severity: Severity
    widgets: list[WidgetConfig]
    suggested_actions: list[ActionId] = Field(alias="suggestedActions")

    def widget(self, name: str) -> WidgetConfig | None:
        """Return the first selected widget with this component name."""
        return next((w for w in self.widgets if w.component_name == name), None)
