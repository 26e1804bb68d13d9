"""Remediation action dispatcher.

Every dispatch records a local timeline event and posts its outcome to the
chat transcript. ``rollback`` is the only action that mutates the store; the
rest are acknowledged after a short simulated delay.
"""

import asyncio
import logging
from typing import TypedDict

from warroom.analysis.models import ActionId
from warroom.dashboard.transcript import ChatTranscript, Timeline
from warroom.errors import OperationResult, failed, ok
from warroom.incidents.operations import initiate_rollback
from warroom.observability.metrics import REMEDIATIONS_TOTAL
from warroom.store.base import IncidentStore

logger = logging.getLogger(__name__)

ACKNOWLEDGEMENTS: dict[ActionId, str] = {
    "restart": "Restart signal sent to {service}.",
    "scale_up": "Scaling out {service}: +2 replicas requested.",
    "enable_cache": "Read-through cache enabled for {service}.",
    "monitor": "Enhanced monitoring enabled for {service}.",
}


class DispatchContext(TypedDict, total=False):
    incident_id: str
    service: str


class RemediationDispatcher:
    def __init__(
        self,
        store: IncidentStore,
        transcript: ChatTranscript,
        timeline: Timeline,
        user: str = "commander",
        delay_seconds: float = 1.0,
    ) -> None:
        self._store = store
        self._transcript = transcript
        self._timeline = timeline
        self._user = user
        self._delay = delay_seconds

    async def dispatch(self, action_id: str, context: DispatchContext | None = None) -> OperationResult:
        """Run one remediation action and report the outcome in the transcript."""
        context = context or {}
        self._timeline.record("action", f"Executed remediation: {action_id}", self._user)
        logger.info("Dispatching remediation %s", action_id)

        result = await self._run(action_id, context)

        status = "success" if result["success"] else "failure"
        REMEDIATIONS_TOTAL.labels(action=action_id, status=status).inc()
        icon = "✅" if result["success"] else "❌"
        self._transcript.assistant(f"{icon} {result['message']}")
        if not result["success"]:
            logger.warning("Remediation %s failed: %s", action_id, result.get("error", result["message"]))
        return result

    async def _run(self, action_id: str, context: DispatchContext) -> OperationResult:
        if action_id == "rollback":
            return await initiate_rollback(self._store)

        template = ACKNOWLEDGEMENTS.get(action_id)
        if template is None:
            return failed(f"Unknown action '{action_id}'", f"Unknown remediation action: {action_id}")

        await asyncio.sleep(self._delay)
        return ok(template.format(service=context.get("service") or "the affected service"))
