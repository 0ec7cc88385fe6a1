"""Cross-request behavioural tracking for leads.

Two per-lead tables back the historical stage: a rolling window of
suspicious indicator tokens (:class:`ConversationPattern`) and message
classification counters (:class:`UserBehaviorProfile`). Both live behind a
:class:`KeyedStateStore` so concurrent messages from one lead serialize their
read-modify-write.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from leadguard.logging import get_logger
from leadguard.security.models import (
    BehaviorClassification,
    ConversationPattern,
    ConversationTurn,
    Severity,
    UserBehaviorProfile,
)
from leadguard.security.state import InMemoryStateStore, KeyedStateStore
from leadguard.security.thresholds import ValidationThresholds

log = get_logger("leadguard.security.behavior")

# (token, pattern); one token per indicator type present in a message
SUSPICIOUS_INDICATORS: list[tuple[str, re.Pattern[str]]] = [
    ("ignore", re.compile(r"\bignor(?:e|ed|ing)\b", re.IGNORECASE)),
    ("override", re.compile(r"\boverrid(?:e|es|ing)\b", re.IGNORECASE)),
    ("system", re.compile(r"\bsystems?\b", re.IGNORECASE)),
    ("prompt", re.compile(r"\bprompts?\b", re.IGNORECASE)),
    ("instruction", re.compile(r"\binstructions?\b", re.IGNORECASE)),
    ("forget", re.compile(r"\bforget\b", re.IGNORECASE)),
    ("pretend", re.compile(r"\bpretend(?:ing)?\b", re.IGNORECASE)),
    ("role", re.compile(r"\broles?\b", re.IGNORECASE)),
    ("character", re.compile(r"\bcharacters?\b", re.IGNORECASE)),
    ("mode", re.compile(r"\bmodes?\b", re.IGNORECASE)),
]

DEFAULT_AVERAGE_LENGTH = 100.0


def extract_indicators(text: str) -> list[str]:
    """Return the indicator tokens present in *text*, in canonical order."""
    return [token for token, pattern in SUSPICIOUS_INDICATORS if pattern.search(text)]


def average_message_length(history: Sequence[ConversationTurn]) -> float:
    if not history:
        return DEFAULT_AVERAGE_LENGTH
    return sum(len(turn.content) for turn in history) / len(history)


@dataclass
class ProgressiveAttackFinding:
    """Evidence for an escalating multi-message attack."""

    confidence: float
    distinct_indicators: list[str]
    recent_count: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "confidence": round(self.confidence, 3),
            "distinct_indicators": self.distinct_indicators,
            "recent_count": self.recent_count,
        }


@dataclass
class BehaviorAnomaly:
    """Deviation of the current message from the lead's history."""

    anomalies: list[str] = field(default_factory=list)
    severity: Severity = Severity.LOW
    profile_risk_score: float = 0.0
    message_length: int = 0
    average_length: float = DEFAULT_AVERAGE_LENGTH

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "anomalies": self.anomalies,
            "profile_risk_score": round(self.profile_risk_score, 3),
            "message_length": self.message_length,
            "average_length": round(self.average_length, 1),
        }


class BehaviorTracker:
    """Owns the per-lead pattern window and behaviour profile tables."""

    def __init__(
        self,
        pattern_store: KeyedStateStore[ConversationPattern] | None = None,
        profile_store: KeyedStateStore[UserBehaviorProfile] | None = None,
        thresholds: ValidationThresholds | None = None,
    ) -> None:
        self._patterns: KeyedStateStore[ConversationPattern] = (
            pattern_store if pattern_store is not None else InMemoryStateStore()
        )
        self._profiles: KeyedStateStore[UserBehaviorProfile] = (
            profile_store if profile_store is not None else InMemoryStateStore()
        )
        self._thresholds = thresholds or ValidationThresholds()

    @property
    def pattern_store(self) -> KeyedStateStore[ConversationPattern]:
        return self._patterns

    @property
    def profile_store(self) -> KeyedStateStore[UserBehaviorProfile]:
        return self._profiles

    async def get_pattern(self, lead_id: int) -> ConversationPattern | None:
        return await self._patterns.get(lead_id)

    async def get_profile(self, lead_id: int) -> UserBehaviorProfile | None:
        return await self._profiles.get(lead_id)

    async def observe_message(
        self, lead_id: int, indicators: list[str]
    ) -> tuple[ConversationPattern | None, ConversationPattern]:
        """Append *indicators* to the lead's window.

        Returns:
            ``(previous, current)`` pattern snapshots.
        """
        window = self._thresholds.pattern_window
        lookback = self._thresholds.progressive_lookback

        def merge(existing: ConversationPattern | None) -> ConversationPattern:
            base = existing or ConversationPattern()
            patterns = (base.suspicious_patterns + indicators)[-window:]
            return ConversationPattern(
                suspicious_patterns=patterns,
                message_count=base.message_count + 1,
                last_updated=datetime.now(UTC),
                risk_score=min(len(set(patterns[-lookback:])) / 10, 1.0),
            )

        return await self._patterns.update(lead_id, merge)

    def detect_progressive(
        self, pattern: ConversationPattern | None, current_indicators: list[str]
    ) -> ProgressiveAttackFinding | None:
        """Check the window, including this message, for escalation.

        *pattern* is the window after the current message was recorded. The
        current message must itself carry at least one indicator.
        """
        if pattern is None or not current_indicators:
            return None

        recent = pattern.suspicious_patterns[-self._thresholds.progressive_lookback :]
        distinct = sorted(set(recent))
        if (
            len(distinct) < self._thresholds.progressive_min_distinct
            or len(recent) < self._thresholds.progressive_min_total
        ):
            return None

        return ProgressiveAttackFinding(
            confidence=min(len(distinct) / 5 * 0.8, 0.9),
            distinct_indicators=distinct,
            recent_count=len(recent),
        )

    async def detect_anomaly(
        self,
        lead_id: int,
        text: str,
        current_indicators: list[str],
        history: Sequence[ConversationTurn],
    ) -> BehaviorAnomaly | None:
        """Compare the current message against the lead's profile.

        Only leads with enough recorded messages are checked.
        """
        profile = await self._profiles.get(lead_id)
        if profile is None or profile.total_messages < self._thresholds.anomaly_min_messages:
            return None

        average_length = average_message_length(history)
        anomalies: list[str] = []

        if len(text) > average_length * self._thresholds.length_anomaly_factor:
            anomalies.append("sudden_length_increase")

        if (
            profile.risk_score < self._thresholds.sudden_suspicious_max_risk
            and len(current_indicators) >= self._thresholds.sudden_suspicious_min_indicators
        ):
            anomalies.append("sudden_suspicious_behavior")

        if not anomalies:
            return None

        if "sudden_suspicious_behavior" in anomalies:
            severity = Severity.HIGH
        elif len(anomalies) > 1:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW

        return BehaviorAnomaly(
            anomalies=anomalies,
            severity=severity,
            profile_risk_score=profile.risk_score,
            message_length=len(text),
            average_length=average_length,
        )

    async def record_classification(
        self, lead_id: int, classification: BehaviorClassification
    ) -> UserBehaviorProfile:
        """Count one message against the lead's profile."""

        def merge(existing: UserBehaviorProfile | None) -> UserBehaviorProfile:
            now = datetime.now(UTC)
            base = existing or UserBehaviorProfile(first_seen=now, last_seen=now)
            return UserBehaviorProfile(
                total_messages=base.total_messages + 1,
                legitimate_count=base.legitimate_count
                + (classification == BehaviorClassification.LEGITIMATE),
                suspicious_count=base.suspicious_count
                + (classification == BehaviorClassification.SUSPICIOUS),
                malicious_count=base.malicious_count
                + (classification == BehaviorClassification.MALICIOUS),
                first_seen=base.first_seen,
                last_seen=now,
            )

        _, profile = await self._profiles.update(lead_id, merge)
        log.debug(
            "behavior_profile_updated",
            lead_id=lead_id,
            classification=classification.value,
            total_messages=profile.total_messages,
            risk_score=round(profile.risk_score, 3),
        )
        return profile
