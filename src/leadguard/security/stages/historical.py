"""Cross-message memory: progressive attacks and behavioural anomalies."""

from __future__ import annotations

from leadguard.security.behavior import BehaviorTracker, extract_indicators
from leadguard.security.models import (
    ConversationContext,
    SecurityEvent,
    SecurityEventType,
    Severity,
    StageOutcome,
    ValidationStage,
)
from leadguard.security.stages.base import ValidationStageRunner, make_event, stage_risk


class HistoricalStage(ValidationStageRunner):
    """Updates the lead's indicator window and checks it for escalation."""

    name = "historical_validation"

    def __init__(self, tracker: BehaviorTracker) -> None:
        self._tracker = tracker

    async def evaluate(self, text: str, context: ConversationContext) -> StageOutcome:
        issues: list[str] = []
        events: list[SecurityEvent] = []

        indicators = extract_indicators(text)
        _, current = await self._tracker.observe_message(context.lead_id, indicators)

        progressive = self._tracker.detect_progressive(current, indicators)
        if progressive is not None:
            issues.append("Progressive injection attack detected")
            events.append(
                make_event(
                    SecurityEventType.PROGRESSIVE_ATTACK,
                    Severity.HIGH,
                    "Progressive injection attack pattern",
                    context,
                    current_indicators=indicators,
                    **progressive.to_dict(),
                )
            )

        anomaly = await self._tracker.detect_anomaly(
            context.lead_id, text, indicators, context.message_history
        )
        if anomaly is not None:
            issues.append("Behavioral anomaly detected")
            events.append(
                make_event(
                    SecurityEventType.BEHAVIORAL_ANOMALY,
                    anomaly.severity,
                    "Behavioral pattern anomaly",
                    context,
                    **anomaly.to_dict(),
                )
            )

        return StageOutcome(
            stage=ValidationStage(
                name=self.name,
                passed=not issues,
                risk_score=stage_risk(issues, events),
                issues=issues,
            ),
            events=events,
        )
