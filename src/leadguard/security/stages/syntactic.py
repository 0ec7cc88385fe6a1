"""Format and encoding checks. Pure, no I/O."""

from __future__ import annotations

import re

from leadguard.security.models import (
    ConversationContext,
    SecurityEvent,
    SecurityEventType,
    Severity,
    StageOutcome,
    ValidationStage,
)
from leadguard.security.normalize import clean_syntax
from leadguard.security.stages.base import ValidationStageRunner, make_event, stage_risk
from leadguard.security.thresholds import ValidationThresholds

_OPENING = re.compile(r"[\[{(]")
_CLOSING = re.compile(r"[\]})]")

MAX_OPENING_BRACKETS = 10
MAX_BRACKET_IMBALANCE = 2

LENGTH_ISSUE_PREFIX = "Message exceeds maximum length"


def check_structure(text: str) -> list[str]:
    """Bracket count and balance sanity checks."""
    issues: list[str] = []
    opening = len(_OPENING.findall(text))
    closing = len(_CLOSING.findall(text))

    if opening > MAX_OPENING_BRACKETS:
        issues.append("Excessive nested structures detected")
    if abs(opening - closing) > MAX_BRACKET_IMBALANCE:
        issues.append("Unbalanced bracket structures")
    return issues


class SyntacticStage(ValidationStageRunner):
    """Cleans cheap syntactic noise; rejects only on excessive length."""

    name = "syntactic_validation"
    mutates_content = True

    def __init__(self, thresholds: ValidationThresholds | None = None) -> None:
        self._thresholds = thresholds or ValidationThresholds()

    async def evaluate(self, text: str, context: ConversationContext) -> StageOutcome:
        issues: list[str] = []
        events: list[SecurityEvent] = []
        sanitized = text
        max_length = self._thresholds.max_message_length

        if len(text) > max_length:
            issues.append(f"{LENGTH_ISSUE_PREFIX} ({len(text)} > {max_length})")
            sanitized = text[:max_length] + "..."
            events.append(
                make_event(
                    SecurityEventType.INTEGRITY_VIOLATION,
                    Severity.MEDIUM,
                    "Message length exceeded limits",
                    context,
                    original_length=len(text),
                    truncated_length=max_length,
                )
            )

        sanitized, findings = clean_syntax(sanitized, self._thresholds.url_encoding_min_count)
        for name, count in findings.encodings.items():
            issues.append(f"Suspicious {name} detected ({count} instances)")
            events.append(
                make_event(
                    SecurityEventType.ENCODING_ATTACK,
                    Severity.MEDIUM,
                    f"Suspicious encoding pattern: {name}",
                    context,
                    pattern=name,
                    count=count,
                )
            )

        if findings.repetition:
            issues.append("Repetitive patterns detected")
            events.append(
                make_event(
                    SecurityEventType.INTEGRITY_VIOLATION,
                    Severity.LOW,
                    "Repetitive patterns detected and cleaned",
                    context,
                )
            )

        issues.extend(check_structure(sanitized))

        passed = not any(issue.startswith(LENGTH_ISSUE_PREFIX) for issue in issues)
        return StageOutcome(
            stage=ValidationStage(
                name=self.name,
                passed=passed,
                risk_score=stage_risk(issues, events),
                issues=issues,
            ),
            events=events,
            sanitized=sanitized,
        )
