"""Common shape of a validation stage."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

from leadguard.logging import get_logger
from leadguard.security.models import (
    ConversationContext,
    SecurityEvent,
    SecurityEventType,
    Severity,
    StageOutcome,
    ValidationStage,
)

log = get_logger("leadguard.security.stages")

EVENT_RISK_WEIGHTS: dict[Severity, float] = {
    Severity.LOW: 0.1,
    Severity.MEDIUM: 0.3,
    Severity.HIGH: 0.4,
    Severity.CRITICAL: 0.4,
}


def stage_risk(issues: list[str], events: list[SecurityEvent]) -> float:
    """0.2 per issue plus a per-severity weight per event, capped at 1."""
    if not issues and not events:
        return 0.0
    score = len(issues) * 0.2
    score += sum(EVENT_RISK_WEIGHTS[event.severity] for event in events)
    return min(score, 1.0)


def make_event(
    event_type: SecurityEventType,
    severity: Severity,
    description: str,
    context: ConversationContext,
    **metadata: Any,
) -> SecurityEvent:
    """Build an event tagged with the context's lead and user."""
    return SecurityEvent(
        type=event_type,
        severity=severity,
        description=description,
        lead_id=context.lead_id,
        user_id=context.user_id,
        metadata=metadata,
    )


class ValidationStageRunner(ABC):
    """One detector in the ordered pipeline.

    Subclasses implement :meth:`evaluate`. :meth:`run` times it and turns
    any exception into a failed stage carrying a ``validation_failure``
    event, so a broken detector can never crash the orchestrator.
    """

    name: str = ""
    mutates_content: bool = False

    async def run(self, text: str, context: ConversationContext) -> StageOutcome:
        start = time.perf_counter()
        try:
            outcome = await self.evaluate(text, context)
        except Exception as e:
            log.exception(
                "validation_stage_error",
                stage=self.name,
                lead_id=context.lead_id,
                error=str(e),
            )
            outcome = StageOutcome(
                stage=ValidationStage(
                    name=self.name,
                    passed=False,
                    risk_score=1.0,
                    issues=[f"Stage error: {type(e).__name__}"],
                ),
                events=[
                    make_event(
                        SecurityEventType.VALIDATION_FAILURE,
                        Severity.HIGH,
                        f"Validation stage {self.name} raised {type(e).__name__}",
                        context,
                        stage=self.name,
                        error_type=type(e).__name__,
                    )
                ],
            )

        outcome.stage.processing_time_ms = (time.perf_counter() - start) * 1000
        return outcome

    @abstractmethod
    async def evaluate(self, text: str, context: ConversationContext) -> StageOutcome:
        """Inspect *text* and report the stage result."""
        raise NotImplementedError
