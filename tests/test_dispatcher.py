"""Unit tests for the remediation dispatcher."""

from unittest.mock import AsyncMock, patch

import pytest

from warroom.dashboard.dispatcher import RemediationDispatcher
from warroom.dashboard.transcript import ChatTranscript, Timeline
from warroom.errors import failed
from warroom.store.models import Incident, parse_record
from warroom.store.sqlite import SqliteIncidentStore


@pytest.fixture
def transcript() -> ChatTranscript:
    return ChatTranscript()


@pytest.fixture
def timeline() -> Timeline:
    return Timeline()


@pytest.fixture
def dispatcher(store: SqliteIncidentStore, transcript: ChatTranscript, timeline: Timeline) -> RemediationDispatcher:
    return RemediationDispatcher(store, transcript, timeline, user="alice", delay_seconds=0)


class TestRollback:
    @pytest.mark.asyncio
    async def test_resolves_active_incident(
        self, store: SqliteIncidentStore, dispatcher: RemediationDispatcher, transcript: ChatTranscript
    ) -> None:
        incident_id = await store.simulate_payment_incident()

        result = await dispatcher.dispatch("rollback")

        assert result["success"] is True
        assert result["message"] == "Rollback successful. Service recovering."
        incident = parse_record(Incident, (await store.query("incidents", {"id": incident_id}))[0])
        assert incident is not None
        assert incident.status == "resolved"
        assert transcript.messages[-1].content.startswith("✅")

    @pytest.mark.asyncio
    async def test_targets_most_recent_active(self, store: SqliteIncidentStore, dispatcher: RemediationDispatcher) -> None:
        service_id = (await store.insert("services", {"name": "api"}))["id"]
        older = await store.insert(
            "incidents", {"service_id": service_id, "status": "active", "started_at": "2026-01-01T00:00:00+00:00"}
        )
        newer = await store.insert(
            "incidents", {"service_id": service_id, "status": "active", "started_at": "2026-02-01T00:00:00+00:00"}
        )

        await dispatcher.dispatch("rollback")

        statuses = {r["id"]: r["status"] for r in await store.query("incidents")}
        assert statuses[newer["id"]] == "resolved"
        assert statuses[older["id"]] == "active"

    @pytest.mark.asyncio
    async def test_nothing_to_roll_back(self, dispatcher: RemediationDispatcher, transcript: ChatTranscript) -> None:
        result = await dispatcher.dispatch("rollback")
        assert result["success"] is False
        assert result["message"] == "No active incidents to rollback."
        assert transcript.messages[-1].content == "❌ No active incidents to rollback."

    @pytest.mark.asyncio
    async def test_store_error_surfaced_verbatim(
        self, dispatcher: RemediationDispatcher, transcript: ChatTranscript
    ) -> None:
        with patch(
            "warroom.dashboard.dispatcher.initiate_rollback",
            new_callable=AsyncMock,
            return_value=failed("permission denied for function resolve_incident", "Rollback failed: permission denied"),
        ):
            result = await dispatcher.dispatch("rollback")

        assert result["success"] is False
        assert result["error"] == "permission denied for function resolve_incident"
        assert "❌" in transcript.messages[-1].content


class TestAcknowledgedActions:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ["restart", "scale_up", "enable_cache", "monitor"])
    async def test_ui_only_actions(
        self,
        action: str,
        store: SqliteIncidentStore,
        dispatcher: RemediationDispatcher,
        transcript: ChatTranscript,
    ) -> None:
        result = await dispatcher.dispatch(action, {"service": "payment-service"})

        assert result["success"] is True
        assert "payment-service" in result["message"]
        assert transcript.messages[-1].content.startswith("✅")
        # No store mutation
        assert await store.query("incident_events") == []

    @pytest.mark.asyncio
    async def test_unknown_action_fails_loudly(
        self, dispatcher: RemediationDispatcher, transcript: ChatTranscript
    ) -> None:
        result = await dispatcher.dispatch("reboot_universe")
        assert result["success"] is False
        assert transcript.messages[-1].content.startswith("❌")


class TestTimeline:
    @pytest.mark.asyncio
    async def test_every_dispatch_recorded(self, dispatcher: RemediationDispatcher, timeline: Timeline) -> None:
        await dispatcher.dispatch("restart")
        await dispatcher.dispatch("rollback")
        await dispatcher.dispatch("nope")

        assert [e.message for e in timeline.events] == [
            "Executed remediation: restart",
            "Executed remediation: rollback",
            "Executed remediation: nope",
        ]
        assert all(e.type == "action" and e.user == "alice" for e in timeline.events)


class TestTranscriptAndTimelineModels:
    def test_timeline_dedupes_by_id(self) -> None:
        timeline = Timeline()
        assert timeline.record("detected", "first", "system", event_id="e1") is not None
        assert timeline.record("detected", "again", "system", event_id="e1") is None
        assert len(timeline) == 1

    def test_transcript_roles(self) -> None:
        transcript = ChatTranscript()
        transcript.user("hi")
        transcript.assistant("hello")
        assert [m.role for m in transcript.messages] == ["user", "assistant"]
        assert len(transcript) == 2
