"""Embedding similarity and regex sub-detectors as a pipeline stage."""

from __future__ import annotations

from leadguard.security.models import (
    ConversationContext,
    RiskLevel,
    StageOutcome,
    ValidationStage,
)
from leadguard.security.semantic import SemanticAnalyzer
from leadguard.security.stages.base import ValidationStageRunner, make_event


class SemanticStage(ValidationStageRunner):
    """Fails whenever the aggregated semantic risk is medium or above."""

    name = "semantic_validation"
    mutates_content = True

    def __init__(self, analyzer: SemanticAnalyzer) -> None:
        self._analyzer = analyzer

    async def evaluate(self, text: str, context: ConversationContext) -> StageOutcome:
        analysis = await self._analyzer.analyze(text, context.lead_id)

        issues: list[str] = []
        if analysis.threats:
            kinds = ", ".join(sorted({threat.type.value for threat in analysis.threats}))
            issues.append(f"Semantic threats detected: {kinds}")

        events = [
            make_event(
                threat.type,
                threat.severity,
                f"Semantic threat: {threat.type.value}",
                context,
                confidence=round(threat.confidence, 3),
                pattern=threat.pattern,
            )
            for threat in analysis.threats
        ]

        return StageOutcome(
            stage=ValidationStage(
                name=self.name,
                passed=analysis.risk_level == RiskLevel.LOW,
                risk_score=analysis.risk_score,
                issues=issues,
            ),
            events=events,
            sanitized=analysis.sanitized_content,
        )
