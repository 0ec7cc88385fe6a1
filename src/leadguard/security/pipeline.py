"""Ordered, short-circuiting validation pipeline.

Default order: syntactic -> legacy -> semantic -> contextual -> historical.
Each stage sees the text produced by the last content-mutating stage before
it. The first failing stage ends the run; later stages never execute.

Two failure policies meet here. Stages fail closed on their own errors (see
:class:`~leadguard.security.stages.base.ValidationStageRunner`), and anything
else that goes wrong inside :meth:`ValidationPipeline.validate` is turned into
a rejected, high-risk verdict by :meth:`ValidationPipeline.degrade_closed`.
Callers never see an exception.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

from leadguard.logging import get_logger
from leadguard.security.forensics import log_security_event
from leadguard.security.models import (
    BehaviorClassification,
    ConversationContext,
    RiskLevel,
    SecurityEvent,
    SecurityEventType,
    Severity,
    ValidationMetadata,
    ValidationRequest,
    ValidationResult,
    ValidationStage,
)
from leadguard.security.thresholds import ValidationThresholds

if TYPE_CHECKING:
    from leadguard.embeddings.adapter import CachedEmbedder
    from leadguard.security.behavior import BehaviorTracker
    from leadguard.security.stages.base import ValidationStageRunner

log = get_logger("leadguard.security.pipeline")

_BLOCKING_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})


class ValidationPipeline:
    """Run a message through the configured stages and build a verdict."""

    def __init__(
        self,
        stages: Sequence[ValidationStageRunner],
        *,
        tracker: BehaviorTracker,
        thresholds: ValidationThresholds | None = None,
        embedder: CachedEmbedder | None = None,
    ) -> None:
        if not stages:
            raise ValueError("ValidationPipeline needs at least one stage")
        self._stages = tuple(stages)
        self._tracker = tracker
        self._thresholds = thresholds or ValidationThresholds()
        self._embedder = embedder

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self._stages]

    @property
    def tracker(self) -> BehaviorTracker:
        return self._tracker

    async def validate(self, message: str, context: ConversationContext) -> ValidationResult:
        """Validate one inbound lead message.

        Args:
            message: Raw message text.
            context: Conversation state owned by the chat service.

        Returns:
            A :class:`ValidationResult`. Never raises.
        """
        start = time.perf_counter()
        stages: list[ValidationStage] = []
        events: list[SecurityEvent] = []
        current = message
        risk_level = RiskLevel.LOW
        hits_before = self._cache_hits()

        try:
            for runner in self._stages:
                outcome = await runner.run(current, context)
                stages.append(outcome.stage)
                events.extend(outcome.events)

                if not outcome.stage.passed:
                    result = ValidationResult(
                        is_valid=False,
                        risk_level=RiskLevel.HIGH,
                        sanitized_input=current,
                        failed_stages=[outcome.stage],
                        security_events=events,
                        metadata=self._metadata(start, stages, message, current, hits_before),
                        stages=stages,
                    )
                    await self._tracker.record_classification(
                        context.lead_id, _classify_rejection(events)
                    )
                    log_security_event(content=message, context=context, result=result)
                    return result

                if runner.mutates_content and outcome.sanitized is not None:
                    current = outcome.sanitized
                risk_level = risk_level.max(
                    RiskLevel.from_score(
                        outcome.stage.risk_score,
                        high=self._thresholds.risk_high,
                        medium=self._thresholds.risk_medium,
                    )
                )

            await self._tracker.record_classification(
                context.lead_id, BehaviorClassification.LEGITIMATE
            )
        except Exception as e:
            return self.degrade_closed(e, message, context, start, stages, events)

        result = ValidationResult(
            is_valid=True,
            risk_level=risk_level,
            sanitized_input=current,
            security_events=events,
            metadata=self._metadata(start, stages, message, current, hits_before),
            stages=stages,
        )
        log.debug(
            "message_validated",
            lead_id=context.lead_id,
            risk_level=risk_level.value,
            stages_executed=len(stages),
            processing_ms=round(result.metadata.total_processing_time_ms, 2),
        )
        return result

    async def validate_request(self, request: ValidationRequest) -> ValidationResult:
        """Validate a prebuilt :class:`ValidationRequest`."""
        return await self.validate(request.message, request.context)

    def degrade_closed(
        self,
        error: BaseException,
        message: str,
        context: ConversationContext,
        start: float,
        stages: list[ValidationStage],
        events: list[SecurityEvent],
    ) -> ValidationResult:
        """Fail closed: reject the message when the pipeline itself breaks.

        The behaviour profile is left untouched.
        """
        log.exception(
            "validation_pipeline_error",
            lead_id=context.lead_id,
            error=str(error),
            error_type=type(error).__name__,
            stages_executed=len(stages),
        )
        events = [
            *events,
            SecurityEvent(
                type=SecurityEventType.VALIDATION_FAILURE,
                severity=Severity.HIGH,
                description="Validation pipeline error; message rejected",
                lead_id=context.lead_id,
                user_id=context.user_id,
                metadata={"stage": "orchestrator", "error_type": type(error).__name__},
            ),
        ]
        result = ValidationResult(
            is_valid=False,
            risk_level=RiskLevel.HIGH,
            sanitized_input=message,
            failed_stages=[stage for stage in stages if not stage.passed],
            security_events=events,
            metadata=ValidationMetadata(
                total_processing_time_ms=(time.perf_counter() - start) * 1000,
                stages_executed=len(stages),
                original_length=len(message),
                sanitized_length=len(message),
            ),
            stages=stages,
        )
        log_security_event(content=message, context=context, result=result, degraded=True)
        return result

    def _cache_hits(self) -> int:
        if self._embedder is None:
            return 0
        return self._embedder.cache_stats().hits

    def _metadata(
        self,
        start: float,
        stages: list[ValidationStage],
        original: str,
        sanitized: str,
        hits_before: int,
    ) -> ValidationMetadata:
        return ValidationMetadata(
            total_processing_time_ms=(time.perf_counter() - start) * 1000,
            stages_executed=len(stages),
            cache_hits=self._cache_hits() - hits_before,
            original_length=len(original),
            sanitized_length=len(sanitized),
        )


def _classify_rejection(events: list[SecurityEvent]) -> BehaviorClassification:
    if any(event.severity in _BLOCKING_SEVERITIES for event in events):
        return BehaviorClassification.MALICIOUS
    return BehaviorClassification.SUSPICIOUS
