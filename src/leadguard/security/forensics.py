"""Forensic logging for rejected messages.

All WARNING+ records land in the rotating security log file when file logging
is enabled. Raw message text is never logged beyond a short preview.
"""

from __future__ import annotations

from datetime import UTC, datetime

from leadguard.embeddings.adapter import content_hash
from leadguard.logging import get_logger
from leadguard.security.models import ConversationContext, ValidationResult

log = get_logger("leadguard.security.forensics")


def log_security_event(
    *,
    content: str,
    context: ConversationContext,
    result: ValidationResult,
    degraded: bool = False,
) -> None:
    """Log a detailed forensic record for a rejected verdict."""
    log.warning(
        "security_event",
        event_type="validation_degraded" if degraded else "message_rejected",
        lead_id=context.lead_id,
        user_id=context.user_id,
        timestamp=datetime.now(UTC).isoformat(),
        risk_level=result.risk_level.value,
        failed_stages=result.failed_stage_names,
        stages_executed=result.metadata.stages_executed,
        event_count=len(result.security_events),
        events=[
            {
                "type": e.type.value,
                "severity": e.severity.value,
                "description": e.description[:100],
            }
            for e in result.security_events
        ],
        content_hash=content_hash(content),
        content_length=len(content),
        content_preview=content[:200],
        processing_ms=round(result.metadata.total_processing_time_ms, 2),
    )
