"""Security event persistence, alerting and reporting."""

from leadguard.monitoring.models import (
    ComponentStatus,
    ConversationAnalysis,
    DashboardSnapshot,
    MonitoringConfig,
    MonitoringReport,
    MonitoringStatus,
    RecommendationType,
    SecurityAlert,
    SecurityMetrics,
    SecurityRecommendation,
    SystemHealth,
)
from leadguard.monitoring.service import SecurityMonitoringService, build_monitoring_service
from leadguard.monitoring.storage import (
    InMemorySecurityEventStore,
    PostgresSecurityEventStore,
    SecurityEventStore,
)

__all__ = [
    "ComponentStatus",
    "ConversationAnalysis",
    "DashboardSnapshot",
    "InMemorySecurityEventStore",
    "MonitoringConfig",
    "MonitoringReport",
    "MonitoringStatus",
    "PostgresSecurityEventStore",
    "RecommendationType",
    "SecurityAlert",
    "SecurityEventStore",
    "SecurityMetrics",
    "SecurityMonitoringService",
    "SecurityRecommendation",
    "SystemHealth",
    "build_monitoring_service",
]
