"""FastAPI backend for the incident war room.

The incident store and one dashboard session are built at startup and shared
across requests. Route-level errors are returned as
``{"success": false, "error": ...}`` with a status code per error type.
"""

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict, Field

from warroom.analysis.models import IncidentAnalysis
from warroom.config import get_settings, is_ai_configured
from warroom.dashboard.session import DashboardSession, DashboardSnapshot
from warroom.diagnosis.query_doctor import DEFAULT_SCHEMA, QueryDiagnosis, analyze_slow_query
from warroom.errors import (
    ConfigurationMissingError,
    NotFoundError,
    StoreError,
    ValidationFailedError,
    WarRoomError,
)
from warroom.incidents.operations import IncidentSummary, disconnect_service, list_incidents, remediate
from warroom.observability.metrics import APP_INFO, COMPONENT_HEALTHY, REQUEST_DURATION, REQUESTS_TOTAL
from warroom.store.base import IncidentStore
from warroom.store.factory import get_store
from warroom.store.models import Service, parse_records

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RemediateRequest(CamelModel):
    """Request body for POST /incident/remediate."""

    action: str | None = None
    incident_id: str | None = Field(default=None, alias="incidentId")


class RemediateResponse(CamelModel):
    success: bool
    message: str
    resolved_count: int | None = Field(default=None, alias="resolvedCount")
    purged_count: int | None = Field(default=None, alias="purgedCount")


class DisconnectRequest(CamelModel):
    """Request body for POST /services/disconnect."""

    service_id: str | None = Field(default=None, alias="serviceId")


class OperationResponse(CamelModel):
    success: bool
    message: str
    error: str | None = None


class AnalyzeQueryRequest(CamelModel):
    """Request body for POST /external-db/analyze-query."""

    query: str | None = None
    schema_summary: str | None = Field(default=None, alias="schema")


class AnalyzeQueryResponse(CamelModel):
    success: bool
    diagnosis: QueryDiagnosis


class ChatRequest(CamelModel):
    message: str


class ChatResponse(CamelModel):
    success: bool
    message: str
    incident_id: str | None = Field(default=None, alias="incidentId")
    analysis: IncidentAnalysis | None = None
    error: str | None = None


class ActionRequest(CamelModel):
    action: str


class SlackPostRequest(CamelModel):
    channel: str
    text: str


class TriggerResponse(CamelModel):
    success: bool
    message: str
    incident_id: str | None = Field(default=None, alias="incidentId")
    error: str | None = None


class ComponentHealth(BaseModel):
    """Health status of a single dependency."""

    name: str
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    store: str
    components: list[ComponentHealth]


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the store and mount the dashboard once at startup, tear down on shutdown."""
    settings = get_settings()
    store = get_store(settings)
    APP_INFO.info({"version": VERSION, "store": store.name, "llm_provider": settings.llm_provider})

    session = DashboardSession(store, settings)
    await session.mount()
    app.state.store = store
    app.state.session = session

    yield

    await session.unmount()
    await store.close()
    logger.info("Shutting down war room")


app = FastAPI(title="Incident War Room", version=VERSION, lifespan=lifespan)


def _store(request: Request) -> IncidentStore:
    return request.app.state.store


def _session(request: Request) -> DashboardSession:
    return request.app.state.session


# ---------------------------------------------------------------------------
# Error mapping and request metrics
# ---------------------------------------------------------------------------

_ERROR_STATUS: list[tuple[type[WarRoomError], int]] = [
    (ValidationFailedError, 400),
    (NotFoundError, 404),
    (ConfigurationMissingError, 503),
    (StoreError, 500),
]


@app.exception_handler(WarRoomError)
async def warroom_error_handler(request: Request, exc: WarRoomError) -> JSONResponse:
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"success": False, "error": str(exc)})


@app.middleware("http")
async def record_request_metrics(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    start = time.monotonic()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    status = "success" if response.status_code < 400 else "error"
    REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
    REQUESTS_TOTAL.labels(endpoint=endpoint, status=status).inc()
    return response


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/incident/remediate", response_model=RemediateResponse, response_model_exclude_none=True)
async def remediate_incident(body: RemediateRequest, request: Request) -> RemediateResponse:
    """Purge error logs or resolve active incidents."""
    result = await remediate(_store(request), body.action or "", body.incident_id)
    return RemediateResponse(
        success=result["success"],
        message=result["message"],
        resolved_count=result.get("resolved_count"),
        purged_count=result.get("purged_count"),
    )


@app.post("/services/disconnect", response_model=OperationResponse, response_model_exclude_none=True)
async def disconnect(body: DisconnectRequest, request: Request) -> OperationResponse:
    """Delete a service and all of its incidents."""
    result = await disconnect_service(_store(request), body.service_id or "")
    return OperationResponse(success=result["success"], message=result["message"])


@app.post("/external-db/analyze-query", response_model=AnalyzeQueryResponse)
async def analyze_query(body: AnalyzeQueryRequest) -> AnalyzeQueryResponse:
    """Diagnose a slow SQL query."""
    if not body.query:
        msg = "Missing query"
        raise ValidationFailedError(msg)
    diagnosis = await analyze_slow_query(body.query, body.schema_summary or DEFAULT_SCHEMA)
    return AnalyzeQueryResponse(success=True, diagnosis=diagnosis)


@app.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(body: ChatRequest, request: Request) -> ChatResponse:
    """Submit an incident report to the dashboard."""
    if not body.message.strip():
        msg = "Missing message"
        raise ValidationFailedError(msg)
    result = await _session(request).submit_report(body.message)
    incident = result.get("incident")
    return ChatResponse(
        success=result["success"],
        message=result["message"],
        incident_id=incident.id if incident else None,
        analysis=result.get("analysis"),
        error=result.get("error"),
    )


@app.get("/dashboard", response_model=DashboardSnapshot)
async def dashboard(request: Request) -> DashboardSnapshot:
    """Everything the dashboard renders, in one read."""
    return _session(request).snapshot()


@app.post("/actions", response_model=OperationResponse, response_model_exclude_none=True)
async def run_action(body: ActionRequest, request: Request) -> OperationResponse:
    """Dispatch a remediation action from the dashboard."""
    result = await _session(request).run_action(body.action)
    return OperationResponse(success=result["success"], message=result["message"], error=result.get("error"))


@app.post("/slack/post", response_model=OperationResponse, response_model_exclude_none=True)
async def slack_post(body: SlackPostRequest, request: Request) -> OperationResponse:
    """Post the incident update draft (simulated)."""
    result = _session(request).post_slack_draft(body.channel, body.text)
    if not result["success"]:
        raise ValidationFailedError(result.get("error", result["message"]))
    return OperationResponse(success=True, message=result["message"])


@app.post("/demo/payment-incident", response_model=TriggerResponse, response_model_exclude_none=True)
async def demo_payment_incident(request: Request) -> TriggerResponse:
    """Simulate a critical payment service failure."""
    result = await _session(request).trigger_demo_incident()
    return TriggerResponse(
        success=result["success"],
        message=result["message"],
        incident_id=result.get("incident_id"),
        error=result.get("error"),
    )


@app.post("/demo/traffic-spike", response_model=TriggerResponse, response_model_exclude_none=True)
async def demo_traffic_spike(request: Request) -> TriggerResponse:
    """Simulate a traffic surge on the CDN."""
    result = await _session(request).trigger_traffic_spike()
    return TriggerResponse(
        success=result["success"],
        message=result["message"],
        incident_id=result.get("incident_id"),
        error=result.get("error"),
    )


@app.get("/incidents", response_model=list[IncidentSummary])
async def incidents(request: Request, limit: int = 50) -> list[IncidentSummary]:
    """Incidents newest first, with service names."""
    return await list_incidents(_store(request), limit)


@app.get("/services", response_model=list[Service])
async def services(request: Request) -> list[Service]:
    """All registered services."""
    rows = await _store(request).query("services", order_by="name", descending=False)
    return parse_records(Service, rows)


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Check reachability of the incident store and whether AI diagnosis is configured."""
    settings = get_settings()
    store = _store(request)
    components: list[ComponentHealth] = []

    # --- Incident store ---
    if await store.ping():
        components.append(ComponentHealth(name="store", status="healthy"))
    elif store.name == "inert":
        components.append(ComponentHealth(name="store", status="unconfigured", detail="No incident store configured"))
    else:
        components.append(ComponentHealth(name="store", status="unhealthy", detail=f"{store.name} store unreachable"))

    # --- AI provider (optional) ---
    if is_ai_configured(settings):
        components.append(ComponentHealth(name="ai", status="healthy", detail=settings.llm_provider))
    else:
        components.append(
            ComponentHealth(name="ai", status="unconfigured", detail="Query doctor uses canned diagnoses")
        )

    # --- Update Prometheus gauges ---
    for comp in components:
        COMPONENT_HEALTHY.labels(component=comp.name).set(1.0 if comp.status == "healthy" else 0.0)

    store_status = components[0].status
    if store_status == "healthy":
        overall = "healthy" if components[1].status == "healthy" else "degraded"
    else:
        overall = "degraded" if store_status == "unconfigured" else "unhealthy"
    return HealthResponse(status=overall, store=store.name, components=components)
