"""Regex jailbreak matching plus per-lead rate limiting."""

from __future__ import annotations

from leadguard.security.models import (
    ConversationContext,
    RiskLevel,
    SecurityEvent,
    SecurityEventType,
    Severity,
    StageOutcome,
    ValidationStage,
)
from leadguard.security.prompt_guard import CATEGORY_EVENT_TYPES, ENCODING_FINDINGS, PromptGuard
from leadguard.security.rate_limiter import RateLimiter
from leadguard.security.stages.base import ValidationStageRunner, make_event

LEVEL_RISK: dict[RiskLevel, float] = {
    RiskLevel.LOW: 0.2,
    RiskLevel.MEDIUM: 0.6,
    RiskLevel.HIGH: 0.9,
}


class LegacyPatternStage(ValidationStageRunner):
    """Hard-fails on any jailbreak regex hit or an exhausted rate-limit window."""

    name = "legacy_pattern_validation"

    def __init__(self, guard: PromptGuard, rate_limiter: RateLimiter) -> None:
        self._guard = guard
        self._rate_limiter = rate_limiter

    async def evaluate(self, text: str, context: ConversationContext) -> StageOutcome:
        allowed, retry_after = self._rate_limiter.check(context.lead_id)
        if not allowed:
            limit = self._rate_limiter.max_messages
            window = self._rate_limiter.window_seconds
            return StageOutcome(
                stage=ValidationStage(
                    name=self.name,
                    passed=False,
                    risk_score=LEVEL_RISK[RiskLevel.HIGH],
                    issues=[f"Rate limit exceeded ({limit} messages per {window:g}s)"],
                ),
                events=[
                    make_event(
                        SecurityEventType.RATE_LIMIT_EXCEEDED,
                        Severity.MEDIUM,
                        "Lead exceeded message rate limit",
                        context,
                        max_messages=limit,
                        window_seconds=window,
                        retry_after_seconds=round(retry_after, 2),
                    )
                ],
            )

        analysis = self._guard.analyze_input(text, context.lead_id)
        issues = [f"Legacy pattern detected: {pattern}" for pattern in analysis.detected_patterns]
        events: list[SecurityEvent] = [
            make_event(
                CATEGORY_EVENT_TYPES[category],
                Severity.HIGH,
                f"Jailbreak pattern detected: {category}",
                context,
                category=category,
                matches=matches,
            )
            for category, matches in analysis.pattern_categories.items()
        ]

        encoding_findings = [f for f in analysis.character_findings if f in ENCODING_FINDINGS]
        if encoding_findings:
            events.append(
                make_event(
                    SecurityEventType.ENCODING_ATTACK,
                    Severity.MEDIUM,
                    "Suspicious character encoding",
                    context,
                    findings=encoding_findings,
                )
            )

        return StageOutcome(
            stage=ValidationStage(
                name=self.name,
                passed=not analysis.pattern_categories,
                risk_score=LEVEL_RISK[analysis.risk_level],
                issues=issues,
            ),
            events=events,
        )
