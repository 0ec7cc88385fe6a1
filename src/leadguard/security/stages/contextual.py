"""Conversation-flow heuristics: topic drift and explicit topic switches."""

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
from leadguard.security.stages.base import ValidationStageRunner, make_event, stage_risk

SALES_KEYWORDS: tuple[str, ...] = (
    "business",
    "service",
    "product",
    "solution",
    "help",
    "need",
    "interested",
)
OFF_TOPIC_KEYWORDS: tuple[str, ...] = ("weather", "politics", "personal", "unrelated")

_TOPIC_SWITCH_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"let's change the topic", re.IGNORECASE),
    re.compile(r"speaking of something else", re.IGNORECASE),
    re.compile(r"by the way", re.IGNORECASE),
    re.compile(r"completely different question", re.IGNORECASE),
    re.compile(r"random question", re.IGNORECASE),
]

OFF_TOPIC_MIN_MESSAGES = 5
ABRUPT_CHANGE_MIN_LENGTH = 50
ABRUPT_CHANGE_WORDS = 5


def is_off_topic(text: str, message_count: int) -> bool:
    if message_count <= OFF_TOPIC_MIN_MESSAGES:
        return False
    lowered = text.lower()
    has_sales = any(keyword in lowered for keyword in SALES_KEYWORDS)
    has_off_topic = any(keyword in lowered for keyword in OFF_TOPIC_KEYWORDS)
    return has_off_topic and not has_sales


def is_abrupt_topic_change(previous: str, current: str) -> bool:
    """No overlap between the previous message's tail and the current one's head."""
    tail = previous.lower().split()[-ABRUPT_CHANGE_WORDS:]
    head = set(current.lower().split()[:ABRUPT_CHANGE_WORDS])
    shared = [word for word in tail if word in head]
    return not shared and len(current) > ABRUPT_CHANGE_MIN_LENGTH


class ContextualStage(ValidationStageRunner):
    """Fails on any contextual issue."""

    name = "contextual_validation"

    async def evaluate(self, text: str, context: ConversationContext) -> StageOutcome:
        issues: list[str] = []
        events: list[SecurityEvent] = []

        if is_off_topic(text, context.message_count):
            issues.append("Message appears off-topic for sales conversation")

        switches = [p.pattern for p in _TOPIC_SWITCH_PATTERNS if p.search(text)]
        if switches:
            issues.append("Context switching attempt detected")
            events.append(
                make_event(
                    SecurityEventType.CONTEXT_SWITCHING,
                    Severity.MEDIUM,
                    "Context switching attempt",
                    context,
                    confidence=min(len(switches) * 0.3, 1.0),
                    indicators=switches,
                )
            )

        if context.message_history:
            previous = context.message_history[-1].content
            if is_abrupt_topic_change(previous, text):
                issues.append("Abrupt conversation topic change detected")

        return StageOutcome(
            stage=ValidationStage(
                name=self.name,
                passed=not issues,
                risk_score=stage_risk(issues, events),
                issues=issues,
            ),
            events=events,
        )
