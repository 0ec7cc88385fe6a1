"""Data models for the prompt-injection validation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class SecurityEventType(StrEnum):
    """Closed taxonomy of detectable conditions."""

    PROMPT_INJECTION = "prompt_injection"
    ROLE_MANIPULATION = "role_manipulation"
    CONTEXT_SWITCHING = "context_switching"
    INFORMATION_EXTRACTION = "information_extraction"
    ENCODING_ATTACK = "encoding_attack"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INTEGRITY_VIOLATION = "integrity_violation"
    PROGRESSIVE_ATTACK = "progressive_attack"
    BEHAVIORAL_ANOMALY = "behavioral_anomaly"
    VALIDATION_FAILURE = "validation_failure"


# Event types the persisted progressive-attack rule counts per lead
INJECTION_FAMILY = frozenset(
    {
        SecurityEventType.PROMPT_INJECTION,
        SecurityEventType.ROLE_MANIPULATION,
        SecurityEventType.CONTEXT_SWITCHING,
    }
)


class Severity(StrEnum):
    """Severity attached to a security event."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class RiskLevel(StrEnum):
    """Aggregated risk of a message."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_score(cls, score: float, *, high: float = 0.7, medium: float = 0.4) -> RiskLevel:
        """Bucket a [0, 1] score into a level."""
        if score >= high:
            return cls.HIGH
        if score >= medium:
            return cls.MEDIUM
        return cls.LOW

    def max(self, other: RiskLevel) -> RiskLevel:
        """Return the more severe of two levels."""
        order = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH]
        return self if order.index(self) >= order.index(other) else other


class BehaviorClassification(StrEnum):
    """Outcome recorded against a lead's behaviour profile after a run."""

    LEGITIMATE = "legitimate"
    SUSPICIOUS = "suspicious"
    MALICIOUS = "malicious"


@dataclass(frozen=True)
class ConversationTurn:
    """One prior message in a conversation."""

    content: str
    role: str = "user"


@dataclass(frozen=True)
class ConversationContext:
    """Conversation state supplied by the chat service for one message."""

    lead_id: int
    user_id: int | None = None
    message_history: tuple[ConversationTurn, ...] = ()
    conversation_age_minutes: float = 0.0
    message_count: int = 0
    last_message_time: datetime | None = None


@dataclass(frozen=True)
class ValidationRequest:
    """Immutable input to one pipeline run."""

    message: str
    context: ConversationContext

    @property
    def lead_id(self) -> int:
        return self.context.lead_id


@dataclass
class SecurityEvent:
    """A typed, severity-tagged record of a concrete threat."""

    type: SecurityEventType
    severity: Severity
    description: str
    lead_id: int | None = None
    message_id: str | None = None
    user_id: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    id: str | None = None
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "lead_id": self.lead_id,
            "message_id": self.message_id,
            "user_id": self.user_id,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
            "resolved": self.resolved,
        }


@dataclass
class ValidationStage:
    """Result of one detector."""

    name: str
    passed: bool
    risk_score: float  # 0.0 - 1.0
    issues: list[str] = field(default_factory=list)
    processing_time_ms: float = 0.0


@dataclass
class StageOutcome:
    """What a stage hands back to the orchestrator.

    ``sanitized`` is ``None`` for stages that do not rewrite content.
    """

    stage: ValidationStage
    events: list[SecurityEvent] = field(default_factory=list)
    sanitized: str | None = None


@dataclass
class ValidationMetadata:
    """Bookkeeping attached to a verdict."""

    total_processing_time_ms: float = 0.0
    stages_executed: int = 0
    cache_hits: int = 0
    original_length: int = 0
    sanitized_length: int = 0


@dataclass
class ValidationResult:
    """The pipeline's final verdict."""

    is_valid: bool
    risk_level: RiskLevel
    sanitized_input: str
    failed_stages: list[ValidationStage] = field(default_factory=list)
    security_events: list[SecurityEvent] = field(default_factory=list)
    metadata: ValidationMetadata = field(default_factory=ValidationMetadata)
    stages: list[ValidationStage] = field(default_factory=list)

    @property
    def failed_stage_names(self) -> list[str]:
        return [stage.name for stage in self.failed_stages]


@dataclass
class ThreatDetection:
    """One semantic-stage finding."""

    type: SecurityEventType
    confidence: float
    pattern: str
    severity: Severity


@dataclass
class SemanticAnalysis:
    """Result of a semantic analysis pass."""

    is_secure: bool
    risk_score: float
    risk_level: RiskLevel
    threats: list[ThreatDetection] = field(default_factory=list)
    explanation: str = ""
    sanitized_content: str = ""


@dataclass
class LegacyAnalysis:
    """Result of the single-pass legacy classifier."""

    is_secure: bool
    risk_level: RiskLevel
    detected_patterns: list[str] = field(default_factory=list)
    sanitized_content: str = ""
    # category -> matched phrases, for jailbreak regex hits only
    pattern_categories: dict[str, list[str]] = field(default_factory=dict)
    # non-blocking character/length findings
    character_findings: list[str] = field(default_factory=list)


@dataclass
class ConversationPattern:
    """Rolling window of suspicious indicators observed for one lead."""

    suspicious_patterns: list[str] = field(default_factory=list)
    message_count: int = 0
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))
    risk_score: float = 0.0


@dataclass
class UserBehaviorProfile:
    """Per-lead message counters with a derived risk score."""

    total_messages: int = 0
    legitimate_count: int = 0
    suspicious_count: int = 0
    malicious_count: int = 0
    first_seen: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_seen: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def risk_score(self) -> float:
        """(suspicious * 0.5 + malicious) / total, recomputed from the counters."""
        if self.total_messages == 0:
            return 0.0
        return (self.suspicious_count * 0.5 + self.malicious_count) / self.total_messages
