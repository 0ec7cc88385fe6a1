"""Data models for security monitoring.

Everything here is derived from the persisted event log and can be
recomputed at any time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from leadguard.security.models import SecurityEvent, SecurityEventType, Severity

if TYPE_CHECKING:
    from leadguard.config import Settings


class RecommendationType(StrEnum):
    """How urgently a recommendation should be acted on."""

    IMMEDIATE = "immediate"
    MEDIUM = "medium"
    LONG_TERM = "long_term"


class ComponentStatus(StrEnum):
    """Health of a monitored component."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"
    COMPROMISED = "compromised"


class MonitoringStatus(StrEnum):
    """Whether the periodic sweep is running."""

    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class MonitoringConfig:
    """Alert thresholds and sweep cadence."""

    interval_seconds: float = 300.0
    high_events_per_hour: int = 10
    critical_events_per_hour: int = 5
    progressive_events_per_day: int = 3
    failed_validations_per_hour: int = 20
    conversation_alert_risk: float = 0.7
    max_active_alerts: int = 100
    event_buffer_size: int = 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> MonitoringConfig:
        """Build the config from application settings."""
        return cls(
            interval_seconds=settings.monitoring_interval_seconds,
            high_events_per_hour=settings.monitoring_high_events_per_hour,
            critical_events_per_hour=settings.monitoring_critical_events_per_hour,
            progressive_events_per_day=settings.monitoring_progressive_events_per_day,
            failed_validations_per_hour=settings.monitoring_failed_validations_per_hour,
            conversation_alert_risk=settings.monitoring_conversation_alert_risk,
            max_active_alerts=settings.monitoring_max_active_alerts,
            event_buffer_size=settings.monitoring_event_buffer_size,
        )


@dataclass
class SecurityAlert:
    """An operator-facing alert raised by monitoring."""

    severity: Severity
    type: SecurityEventType
    message: str
    affected_entities: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "severity": self.severity.value,
            "type": self.type.value,
            "message": self.message,
            "affected_entities": self.affected_entities,
            "timestamp": self.timestamp.isoformat(),
            "resolved": self.resolved,
        }


@dataclass
class SecurityTrends:
    increasing_threats: bool = False
    common_attack_patterns: list[str] = field(default_factory=list)
    risk_leads: list[int] = field(default_factory=list)


@dataclass
class SecurityMetrics:
    """Aggregates over the events in a time range."""

    total_events: int = 0
    events_by_type: dict[str, int] = field(default_factory=dict)
    events_by_severity: dict[str, int] = field(default_factory=dict)
    recent_events: list[SecurityEvent] = field(default_factory=list)
    risk_score: float = 0.0
    trends: SecurityTrends = field(default_factory=SecurityTrends)


@dataclass
class SecurityRecommendation:
    type: RecommendationType
    priority: int
    title: str
    description: str
    actions: list[str] = field(default_factory=list)


@dataclass
class MonitoringReport:
    """A point-in-time security report."""

    start: datetime
    end: datetime
    metrics: SecurityMetrics
    recommendations: list[SecurityRecommendation] = field(default_factory=list)
    alerts: list[SecurityAlert] = field(default_factory=list)
    report_id: str = field(default_factory=lambda: f"security_report_{uuid4().hex[:12]}")
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ConversationAnalysis:
    """Risk view of a single message in the context of its conversation."""

    lead_id: int
    conversation_risk: float = 0.0
    threat_indicators: list[str] = field(default_factory=list)
    progressive_attack_detected: bool = False
    anomalous_activity_score: float = 0.0
    recommended_actions: list[str] = field(default_factory=list)


@dataclass
class SystemHealth:
    validation_pipeline: ComponentStatus = ComponentStatus.HEALTHY
    semantic_security: ComponentStatus = ComponentStatus.HEALTHY
    storage_integrity: ComponentStatus = ComponentStatus.HEALTHY
    monitoring: MonitoringStatus = MonitoringStatus.INACTIVE

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return {
            "validation_pipeline": self.validation_pipeline.value,
            "semantic_security": self.semantic_security.value,
            "storage_integrity": self.storage_integrity.value,
            "monitoring": self.monitoring.value,
        }


@dataclass
class DashboardSnapshot:
    """Real-time dashboard view over the last 24 hours."""

    current_threat_level: Severity
    active_threats: int
    recent_events: list[SecurityEvent]
    system_health: SystemHealth
    events_last_24h: int = 0
    blocked_attacks: int = 0
    average_risk_score: float = 0.0
    critical_alerts: int = 0
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
