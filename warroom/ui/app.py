"""Streamlit war room dashboard.

Talks to the FastAPI backend via httpx. Run with: make ui
"""

import os
from typing import Any

import httpx
import streamlit as st

API_URL = os.environ.get("API_URL", "http://localhost:8000")
REFRESH_SECONDS = 3

STATUS_ICONS = {"healthy": ":large_green_circle:", "degraded": ":large_yellow_circle:", "down": ":red_circle:"}

st.set_page_config(page_title="Incident War Room", layout="wide")


def _post(path: str, payload: dict[str, object] | None = None) -> dict[str, Any]:
    """POST to the API and return the JSON body, turning failures into an error dict."""
    try:
        resp = httpx.post(f"{API_URL}{path}", json=payload or {}, timeout=30.0)
        return resp.json()
    except httpx.ConnectError:
        return {"success": False, "error": "Cannot reach the API server. Make sure `make serve` is running."}
    except Exception as exc:
        return {"success": False, "error": f"Unexpected error: {exc}"}


def _widget(analysis: dict[str, Any] | None, name: str) -> dict[str, Any] | None:
    if not analysis:
        return None
    return next((w for w in analysis.get("widgets", []) if w.get("componentName") == name), None)


# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------

with st.sidebar:
    st.title("Incident War Room")

    st.subheader("Simulations")
    if st.button("Payment failure"):
        st.toast(_post("/demo/payment-incident").get("message", "Failed"))
    if st.button("Traffic spike"):
        st.toast(_post("/demo/traffic-spike").get("message", "Failed"))

    st.divider()

    st.subheader("Remediation")
    if st.button("Resolve all incidents"):
        result = _post("/incident/remediate", {"action": "resolve"})
        st.toast(result.get("message") or result.get("error", "Failed"))
    if st.button("Purge error logs"):
        result = _post("/incident/remediate", {"action": "clear_logs"})
        st.toast(result.get("message") or result.get("error", "Failed"))

    st.divider()

    # Health check
    st.subheader("Health")
    try:
        health_data: dict[str, Any] = httpx.get(f"{API_URL}/health", timeout=5.0).json()
        st.caption(f"Store: `{health_data.get('store')}`")
        for comp in health_data.get("components", []):
            icon = ":white_check_mark:" if comp.get("status") == "healthy" else ":x:"
            label = f"{icon} {comp.get('name')}: {comp.get('status')}"
            if comp.get("detail"):
                label += f" ({comp['detail']})"
            st.markdown(label)
    except httpx.ConnectError:
        st.error("Cannot reach API server. Is `make serve` running?")
    except Exception as exc:
        st.error(f"Health check failed: {exc}")


# ---------------------------------------------------------------------------
# Live dashboard
# ---------------------------------------------------------------------------


def _render_services(services: list[dict[str, Any]]) -> None:
    st.subheader("Service Health")
    if not services:
        st.caption("No services connected.")
        return
    for service in services:
        icon = STATUS_ICONS.get(service["status"], ":white_circle:")
        latency = f" · {service['latency_ms']:.0f} ms" if service.get("latency_ms") is not None else ""
        st.markdown(f"{icon} **{service['name']}** {service['status']}{latency}")


def _render_incident(snap: dict[str, Any]) -> None:
    analysis = snap.get("analysis") or {}
    service_names = {s["id"]: s["name"] for s in snap.get("services", [])}

    graph = _widget(analysis, "ErrorGraph")
    if graph:
        st.subheader(graph["props"].get("title", "Errors"))
        values = [m["value"] for m in snap.get("metric_history", [])]
        if values:
            st.line_chart(values, color=graph["props"].get("color"))
        else:
            st.caption("Waiting for metrics...")

    stream = _widget(analysis, "LogStream")
    if stream:
        service_filter = stream["props"].get("serviceFilter")
        st.subheader(f"Logs: {service_filter}")
        logs = [log for log in snap.get("logs", []) if service_names.get(log["service_id"]) == service_filter]
        for log in logs[:15]:
            st.code(f"[{log['severity'].upper()}] {log['created_at']}  {log['message']}", language=None)

    buttons = _widget(analysis, "ActionButton")
    if buttons:
        st.subheader("Remediation")
        cols = st.columns(len(buttons["props"]["actions"]))
        for col, action in zip(cols, buttons["props"]["actions"], strict=True):
            if col.button(action.replace("_", " ").title(), key=f"action-{action}"):
                result = _post("/actions", {"action": action})
                st.toast(result.get("message") or result.get("error", "Failed"))

    draft = _widget(analysis, "SlackDraft")
    if draft:
        st.subheader(f"Slack draft for {draft['props']['channel']}")
        text = st.text_area("Draft", draft["props"]["draftText"], key="slack-draft", label_visibility="collapsed")
        if st.button("Post to Slack"):
            result = _post("/slack/post", {"channel": draft["props"]["channel"], "text": text})
            st.toast(result.get("message") or result.get("error", "Failed"))


@st.fragment(run_every=REFRESH_SECONDS)
def dashboard() -> None:
    try:
        resp = httpx.get(f"{API_URL}/dashboard", timeout=5.0)
        resp.raise_for_status()
        snap: dict[str, Any] = resp.json()
    except httpx.ConnectError:
        st.error("Cannot reach the API server. Make sure `make serve` is running.")
        return
    except httpx.HTTPStatusError as exc:
        st.error(f"API error (HTTP {exc.response.status_code}): {exc.response.text}")
        return

    state = snap["state"]
    analysis = snap.get("analysis")
    if state == "ALERT" and analysis:
        st.error(f"🚨 {analysis['type'].replace('_', ' ').upper()} · {analysis['severity'].upper()}")
    elif state == "RECOVERY":
        st.success("✅ Recovering")
    else:
        st.info("All systems operational")

    main, side = st.columns([2, 1])
    with main:
        if state == "ALERT":
            _render_incident(snap)
        _render_services(snap.get("services", []))
    with side:
        recovery = snap.get("recovery")
        if recovery:
            st.subheader("Post-mortem")
            duration = recovery.get("duration_seconds")
            st.markdown(f"**{recovery['type']}** on {recovery.get('service') or 'unknown service'}")
            if duration is not None:
                st.caption(f"Resolved in {duration:.0f}s")
        st.subheader("Timeline")
        for event in reversed(snap.get("timeline", [])):
            st.markdown(f"`{event['timestamp'][11:19]}` **{event['type']}** {event['message']} _({event['user']})_")

    st.divider()
    for msg in snap.get("messages", []):
        with st.chat_message("assistant" if msg["role"] == "system" else msg["role"]):
            st.markdown(msg["content"])


dashboard()

# ---------------------------------------------------------------------------
# User input
# ---------------------------------------------------------------------------

if prompt := st.chat_input("Describe what's going wrong..."):
    with st.spinner("Analyzing..."):
        result = _post("/chat", {"message": prompt})
    if not result.get("success"):
        st.toast(result.get("error") or "Error analyzing input.")
    st.rerun()
