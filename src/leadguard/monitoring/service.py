"""Security monitoring: event persistence, periodic sweeps, alerts and reports.

The service sits beside the validation pipeline, never in front of it.
Persisting an event can fail without affecting the request that produced
it, and the periodic sweep runs as its own asyncio task that shares no lock
with the request path.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from leadguard.config import Settings, get_settings
from leadguard.logging import get_logger
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
    SecurityTrends,
    SystemHealth,
)
from leadguard.monitoring.storage import PostgresSecurityEventStore, SecurityEventStore
from leadguard.security.models import (
    INJECTION_FAMILY,
    LegacyAnalysis,
    SecurityEvent,
    SecurityEventType,
    SemanticAnalysis,
    Severity,
    ValidationResult,
)
from leadguard.security.prompt_guard import CATEGORY_EVENT_TYPES, ENCODING_FINDINGS

if TYPE_CHECKING:
    from leadguard.embeddings.adapter import CachedEmbedder
    from leadguard.security.behavior import BehaviorTracker

log = get_logger("leadguard.monitoring.service")

AlertHandler = Callable[[SecurityAlert], Awaitable[None]]

BLOCKED_ATTACK_TYPES = frozenset(
    {
        SecurityEventType.PROMPT_INJECTION,
        SecurityEventType.ROLE_MANIPULATION,
        SecurityEventType.PROGRESSIVE_ATTACK,
    }
)

SEVERITY_SCORES: dict[Severity, float] = {
    Severity.LOW: 0.2,
    Severity.MEDIUM: 0.5,
    Severity.HIGH: 0.8,
    Severity.CRITICAL: 1.0,
}

_HOUR = timedelta(hours=1)
_DAY = timedelta(hours=24)

RISK_LEAD_MIN_EVENTS = 3
MAX_RISK_LEADS = 10
RECENT_EVENT_COUNT = 10


class SecurityMonitoringService:
    """Persist security events and derive alerts, reports and dashboards."""

    def __init__(
        self,
        store: SecurityEventStore,
        config: MonitoringConfig | None = None,
        *,
        tracker: BehaviorTracker | None = None,
        embedder: CachedEmbedder | None = None,
        alert_handlers: list[AlertHandler] | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Persistent event log.
            config: Thresholds and sweep cadence.
            tracker: Behaviour tracker used for per-lead anomaly scores.
            embedder: Embedding adapter whose fallback state feeds health checks.
            alert_handlers: Coroutines called with every raised alert.
        """
        self._store = store
        self._config = config or MonitoringConfig()
        self._tracker = tracker
        self._embedder = embedder
        self._alert_handlers = list(alert_handlers or [])
        self._event_buffer: deque[SecurityEvent] = deque(maxlen=self._config.event_buffer_size)
        self._alerts: deque[SecurityAlert] = deque(maxlen=self._config.max_active_alerts)
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._storage_healthy = True
        self._last_dashboard: DashboardSnapshot | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic sweep loop."""
        if self._running:
            log.warning("security_monitoring_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        log.info("security_monitoring_started", interval_seconds=self._config.interval_seconds)

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        log.info("security_monitoring_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._config.interval_seconds)
                if not self._running:
                    break
                await self.run_sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                log.exception("security_monitoring_sweep_error")

    async def run_sweep(self) -> DashboardSnapshot:
        """One periodic pass: thresholds, progressive attacks, dashboard."""
        await self.check_alert_thresholds()
        await self.check_progressive_attacks()
        dashboard = await self.get_dashboard()
        self._last_dashboard = dashboard
        log.debug(
            "security_monitoring_sweep_complete",
            threat_level=dashboard.current_threat_level.value,
            events_last_24h=dashboard.events_last_24h,
            active_threats=dashboard.active_threats,
        )
        return dashboard

    @property
    def last_dashboard(self) -> DashboardSnapshot | None:
        return self._last_dashboard

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    async def log_event(self, event: SecurityEvent) -> bool:
        """Persist one event. Failures are logged, never raised.

        Returns:
            True if the event was stored.
        """
        try:
            await self._store.save(event)
        except Exception as e:
            self._storage_healthy = False
            log.error(
                "security_event_persist_failed",
                event_type=event.type.value,
                lead_id=event.lead_id,
                error=str(e),
            )
            return False

        self._storage_healthy = True
        self._event_buffer.append(event)
        return True

    async def record_result(self, result: ValidationResult, *, message_id: str | None = None) -> int:
        """Persist every event from a pipeline run.

        Returns:
            Number of events stored.
        """
        stored = 0
        for event in result.security_events:
            if message_id is not None and event.message_id is None:
                event.message_id = message_id
            stored += await self.log_event(event)
        return stored

    async def record_legacy_analysis(
        self,
        analysis: LegacyAnalysis,
        *,
        lead_id: int,
        message_id: str | None = None,
        user_id: int | None = None,
    ) -> list[SecurityEvent]:
        """Persist the findings of the single-pass legacy classifier."""
        events = [
            SecurityEvent(
                type=CATEGORY_EVENT_TYPES[category],
                severity=Severity.HIGH,
                description=f"Jailbreak pattern detected: {category}",
                lead_id=lead_id,
                message_id=message_id,
                user_id=user_id,
                metadata={"category": category, "matches": matches, "source": "legacy"},
            )
            for category, matches in analysis.pattern_categories.items()
        ]

        encoding = [f for f in analysis.character_findings if f in ENCODING_FINDINGS]
        if encoding:
            events.append(
                SecurityEvent(
                    type=SecurityEventType.ENCODING_ATTACK,
                    severity=Severity.MEDIUM,
                    description="Suspicious character encoding",
                    lead_id=lead_id,
                    message_id=message_id,
                    user_id=user_id,
                    metadata={"findings": encoding, "source": "legacy"},
                )
            )

        if "excessive_length" in analysis.character_findings:
            events.append(
                SecurityEvent(
                    type=SecurityEventType.INTEGRITY_VIOLATION,
                    severity=Severity.LOW,
                    description="Message length exceeded limits",
                    lead_id=lead_id,
                    message_id=message_id,
                    user_id=user_id,
                    metadata={"source": "legacy"},
                )
            )

        for event in events:
            await self.log_event(event)
        return events

    def recent_events(self, limit: int = RECENT_EVENT_COUNT) -> list[SecurityEvent]:
        """Most recently recorded events from the in-memory buffer, newest first."""
        return list(reversed(self._event_buffer))[:limit]

    # ------------------------------------------------------------------
    # Per-message analysis
    # ------------------------------------------------------------------

    async def monitor_conversation(
        self,
        lead_id: int,
        result: ValidationResult,
        semantic: SemanticAnalysis | None = None,
        *,
        message_id: str | None = None,
    ) -> ConversationAnalysis:
        """Record a pipeline run and assess the conversation it belongs to.

        Args:
            lead_id: The lead the message came from.
            result: The pipeline verdict for the message.
            semantic: A standalone semantic analysis of the same message, if
                the caller ran one. Its threats are expected to be in
                ``result`` already, so only its score is used.
            message_id: Identifier of the message, attached to stored events.

        Returns:
            A :class:`ConversationAnalysis` with recommended actions.
        """
        analysis = ConversationAnalysis(lead_id=lead_id)
        await self.record_result(result, message_id=message_id)

        if not result.is_valid:
            analysis.conversation_risk += 0.3
            analysis.threat_indicators.extend(result.failed_stage_names)

        if semantic is not None and not semantic.is_secure:
            analysis.conversation_risk += semantic.risk_score
            analysis.threat_indicators.extend(t.type.value for t in semantic.threats)
        elif semantic is None:
            for stage in result.failed_stages:
                if stage.name == "semantic_validation":
                    analysis.conversation_risk += stage.risk_score

        progressive_count = await self._injection_event_count(lead_id)
        if progressive_count >= self._config.progressive_events_per_day:
            analysis.progressive_attack_detected = True
            analysis.conversation_risk += 0.5
            analysis.threat_indicators.append(SecurityEventType.PROGRESSIVE_ATTACK.value)
            await self.log_event(
                SecurityEvent(
                    type=SecurityEventType.PROGRESSIVE_ATTACK,
                    severity=Severity.HIGH,
                    description="Progressive injection attack pattern detected",
                    lead_id=lead_id,
                    message_id=message_id,
                    metadata={"event_count": progressive_count, "window_hours": 24},
                )
            )

        analysis.anomalous_activity_score = await self._anomaly_score(lead_id)
        if analysis.anomalous_activity_score > 0.7:
            analysis.conversation_risk += 0.3
            analysis.threat_indicators.append(SecurityEventType.BEHAVIORAL_ANOMALY.value)

        analysis.recommended_actions = _conversation_recommendations(analysis)

        if analysis.conversation_risk > self._config.conversation_alert_risk:
            await self.trigger_alert(
                SecurityAlert(
                    severity=Severity.HIGH,
                    type=SecurityEventType.PROMPT_INJECTION,
                    message=f"High-risk conversation detected for lead {lead_id}",
                    affected_entities=[f"lead:{lead_id}"],
                )
            )

        log.debug(
            "conversation_monitored",
            lead_id=lead_id,
            conversation_risk=round(analysis.conversation_risk, 3),
            progressive=analysis.progressive_attack_detected,
        )
        return analysis

    async def _injection_event_count(self, lead_id: int) -> int:
        since = datetime.now(UTC) - _DAY
        events = await self._store.list_events(since, lead_id=lead_id)
        return sum(1 for event in events if event.type in INJECTION_FAMILY)

    async def _anomaly_score(self, lead_id: int) -> float:
        if self._tracker is None:
            return 0.0
        profile = await self._tracker.get_profile(lead_id)
        return profile.risk_score if profile is not None else 0.0

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    async def trigger_alert(self, alert: SecurityAlert) -> SecurityAlert:
        """Log, keep and dispatch an alert."""
        self._alerts.append(alert)
        log.warning(
            "security_alert",
            alert_id=alert.id,
            severity=alert.severity.value,
            alert_type=alert.type.value,
            message=alert.message,
            affected_entities=alert.affected_entities,
        )
        for handler in self._alert_handlers:
            try:
                await handler(alert)
            except Exception as e:
                log.error("security_alert_handler_failed", alert_id=alert.id, error=str(e))
        return alert

    def get_active_alerts(self) -> list[SecurityAlert]:
        """Unresolved alerts, newest first."""
        return [alert for alert in reversed(self._alerts) if not alert.resolved]

    async def check_alert_thresholds(self) -> list[SecurityAlert]:
        """Raise alerts when rolling one-hour counts exceed their thresholds."""
        events = await self._store.list_events(datetime.now(UTC) - _HOUR)
        severities = Counter(event.severity for event in events)
        failures = sum(1 for e in events if e.type == SecurityEventType.VALIDATION_FAILURE)

        raised: list[SecurityAlert] = []
        high = severities[Severity.HIGH]
        if high > self._config.high_events_per_hour:
            raised.append(
                await self.trigger_alert(
                    SecurityAlert(
                        severity=Severity.HIGH,
                        type=SecurityEventType.RATE_LIMIT_EXCEEDED,
                        message=f"High risk events threshold exceeded: {high} events in last hour",
                        affected_entities=["system"],
                    )
                )
            )

        critical = severities[Severity.CRITICAL]
        if critical > self._config.critical_events_per_hour:
            raised.append(
                await self.trigger_alert(
                    SecurityAlert(
                        severity=Severity.CRITICAL,
                        type=SecurityEventType.RATE_LIMIT_EXCEEDED,
                        message=(
                            f"Critical events threshold exceeded: {critical} events in last hour"
                        ),
                        affected_entities=["system"],
                    )
                )
            )

        if failures > self._config.failed_validations_per_hour:
            raised.append(
                await self.trigger_alert(
                    SecurityAlert(
                        severity=Severity.HIGH,
                        type=SecurityEventType.VALIDATION_FAILURE,
                        message=f"Validation failures exceeded: {failures} in last hour",
                        affected_entities=["validation_pipeline"],
                    )
                )
            )
        return raised

    async def check_progressive_attacks(self) -> list[SecurityAlert]:
        """Alert once per lead with enough injection-family events in 24 hours."""
        events = await self._store.list_events(datetime.now(UTC) - _DAY)
        counts = Counter(
            event.lead_id
            for event in events
            if event.lead_id is not None and event.type in INJECTION_FAMILY
        )
        already_alerted = {
            entity
            for alert in self.get_active_alerts()
            if alert.type == SecurityEventType.PROGRESSIVE_ATTACK
            for entity in alert.affected_entities
        }

        raised: list[SecurityAlert] = []
        for lead_id, count in counts.items():
            entity = f"lead:{lead_id}"
            if count < self._config.progressive_events_per_day or entity in already_alerted:
                continue
            raised.append(
                await self.trigger_alert(
                    SecurityAlert(
                        severity=Severity.HIGH,
                        type=SecurityEventType.PROGRESSIVE_ATTACK,
                        message=f"Progressive attack: {count} injection events in 24h for lead {lead_id}",
                        affected_entities=[entity],
                    )
                )
            )
        return raised

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def generate_report(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> MonitoringReport:
        """Build a security report for ``[start, end]`` (default: last 24 hours)."""
        end = end or datetime.now(UTC)
        start = start or end - _DAY
        events = await self._store.list_events(start, end)

        metrics = compute_metrics(events, start, end)
        report = MonitoringReport(
            start=start,
            end=end,
            metrics=metrics,
            recommendations=report_recommendations(metrics),
            alerts=self.get_active_alerts(),
        )
        log.info(
            "security_report_generated",
            report_id=report.report_id,
            events=metrics.total_events,
            risk_score=round(metrics.risk_score, 3),
        )
        return report

    async def get_dashboard(self) -> DashboardSnapshot:
        """Current threat level, active threats and health over the last 24 hours."""
        now = datetime.now(UTC)
        events = await self._store.list_events(now - _DAY)
        hour_ago = now - _HOUR

        severities = Counter(event.severity for event in events)
        return DashboardSnapshot(
            current_threat_level=threat_level(events),
            active_threats=sum(1 for event in events if not event.resolved),
            recent_events=events[:RECENT_EVENT_COUNT],
            system_health=self._system_health(
                [e for e in events if e.timestamp >= hour_ago]
            ),
            events_last_24h=len(events),
            blocked_attacks=sum(1 for e in events if e.type in BLOCKED_ATTACK_TYPES),
            average_risk_score=average_risk_score(events),
            critical_alerts=severities[Severity.CRITICAL],
        )

    def _system_health(self, last_hour: list[SecurityEvent]) -> SystemHealth:
        failures = sum(1 for e in last_hour if e.type == SecurityEventType.VALIDATION_FAILURE)
        if failures > self._config.failed_validations_per_hour:
            pipeline_status = ComponentStatus.DOWN
        elif failures:
            pipeline_status = ComponentStatus.DEGRADED
        else:
            pipeline_status = ComponentStatus.HEALTHY

        semantic_status = ComponentStatus.HEALTHY
        if self._embedder is not None and self._embedder.last_call_degraded:
            semantic_status = ComponentStatus.DEGRADED

        return SystemHealth(
            validation_pipeline=pipeline_status,
            semantic_security=semantic_status,
            storage_integrity=(
                ComponentStatus.HEALTHY if self._storage_healthy else ComponentStatus.COMPROMISED
            ),
            monitoring=MonitoringStatus.ACTIVE if self._running else MonitoringStatus.INACTIVE,
        )


# ---------------------------------------------------------------------------
# Pure aggregation helpers
# ---------------------------------------------------------------------------


def threat_level(events: list[SecurityEvent]) -> Severity:
    """Derive the current threat level from recent event severities."""
    severities = Counter(event.severity for event in events)
    if severities[Severity.CRITICAL] > 0:
        return Severity.CRITICAL
    if severities[Severity.HIGH] > 3:
        return Severity.HIGH
    if len(events) > 10:
        return Severity.MEDIUM
    return Severity.LOW


def average_risk_score(events: list[SecurityEvent]) -> float:
    if not events:
        return 0.0
    return sum(SEVERITY_SCORES[event.severity] for event in events) / len(events)


def compute_metrics(
    events: list[SecurityEvent], start: datetime, end: datetime
) -> SecurityMetrics:
    """Aggregate *events* (newest first) observed in ``[start, end]``."""
    by_type = Counter(event.type.value for event in events)
    by_severity = Counter(event.severity.value for event in events)

    midpoint = start + (end - start) / 2
    later = sum(1 for event in events if event.timestamp >= midpoint)
    earlier = len(events) - later

    lead_counts = Counter(event.lead_id for event in events if event.lead_id is not None)
    risk_leads = [
        lead_id for lead_id, count in lead_counts.most_common() if count > RISK_LEAD_MIN_EVENTS
    ][:MAX_RISK_LEADS]

    return SecurityMetrics(
        total_events=len(events),
        events_by_type=dict(by_type),
        events_by_severity=dict(by_severity),
        recent_events=events[:RECENT_EVENT_COUNT],
        risk_score=min(len(events) * 0.1, 1.0),
        trends=SecurityTrends(
            increasing_threats=later > earlier,
            common_attack_patterns=[name for name, _ in by_type.most_common(5)],
            risk_leads=risk_leads,
        ),
    )


def report_recommendations(metrics: SecurityMetrics) -> list[SecurityRecommendation]:
    """Prioritized follow-ups for a report."""
    recommendations: list[SecurityRecommendation] = []

    if metrics.risk_score > 0.8:
        recommendations.append(
            SecurityRecommendation(
                type=RecommendationType.IMMEDIATE,
                priority=1,
                title="High Risk Score Detected",
                description="System risk score is above critical threshold",
                actions=[
                    "Review all recent security events",
                    "Implement additional monitoring",
                    "Consider temporary restrictions on high-risk conversations",
                ],
            )
        )

    if metrics.trends.increasing_threats:
        recommendations.append(
            SecurityRecommendation(
                type=RecommendationType.MEDIUM,
                priority=2,
                title="Increasing Threat Trend",
                description="Security threats are trending upward",
                actions=[
                    "Analyze attack patterns for coordination",
                    "Update security policies",
                ],
            )
        )

    if metrics.trends.risk_leads:
        recommendations.append(
            SecurityRecommendation(
                type=RecommendationType.LONG_TERM,
                priority=3,
                title="Repeat Offender Leads",
                description=(
                    f"{len(metrics.trends.risk_leads)} lead(s) produced more than "
                    f"{RISK_LEAD_MIN_EVENTS} security events"
                ),
                actions=["Review conversations for the listed leads"],
            )
        )

    return recommendations


def _conversation_recommendations(analysis: ConversationAnalysis) -> list[str]:
    actions: list[str] = []
    if analysis.conversation_risk > 0.8:
        actions.append("IMMEDIATE: Block conversation and investigate")
    elif analysis.conversation_risk > 0.5:
        actions.append("Monitor closely and validate all responses")

    if analysis.progressive_attack_detected:
        actions.append("Implement enhanced validation for this lead")

    if analysis.anomalous_activity_score > 0.7:
        actions.append("Review behavioral patterns and consider rate limiting")
    return actions


async def build_monitoring_service(
    settings: Settings | None = None,
    *,
    store: SecurityEventStore | None = None,
    tracker: BehaviorTracker | None = None,
    embedder: CachedEmbedder | None = None,
    alert_handlers: list[AlertHandler] | None = None,
) -> SecurityMonitoringService:
    """Create a monitoring service over an initialized event store.

    Defaults to the PostgreSQL store at ``settings.postgres_dsn``. Schema
    creation errors propagate.
    """
    settings = settings or get_settings()
    if store is None:
        store = PostgresSecurityEventStore(settings.postgres_dsn)
    await store.initialize()
    return SecurityMonitoringService(
        store,
        MonitoringConfig.from_settings(settings),
        tracker=tracker,
        embedder=embedder,
        alert_handlers=alert_handlers,
    )
