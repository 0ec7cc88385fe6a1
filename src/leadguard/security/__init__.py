"""Layered prompt-injection defence for inbound lead messages.

Usage::

    pipeline = await build_validation_pipeline()
    result = await pipeline.validate(message, ConversationContext(lead_id=42))
    if not result.is_valid:
        ...  # substitute a generic redirect reply
"""

from leadguard.security.behavior import BehaviorTracker
from leadguard.security.corpus import CORPUS_VERSION, AttackPatternCorpus
from leadguard.security.factory import build_validation_pipeline
from leadguard.security.models import (
    ConversationContext,
    ConversationTurn,
    LegacyAnalysis,
    RiskLevel,
    SecurityEvent,
    SecurityEventType,
    SemanticAnalysis,
    Severity,
    ValidationRequest,
    ValidationResult,
    ValidationStage,
)
from leadguard.security.pipeline import ValidationPipeline
from leadguard.security.prompt_guard import PromptGuard
from leadguard.security.rate_limiter import RateLimiter
from leadguard.security.semantic import SemanticAnalyzer
from leadguard.security.state import InMemoryStateStore, KeyedStateStore
from leadguard.security.thresholds import ValidationThresholds

__all__ = [
    "CORPUS_VERSION",
    "AttackPatternCorpus",
    "BehaviorTracker",
    "ConversationContext",
    "ConversationTurn",
    "InMemoryStateStore",
    "KeyedStateStore",
    "LegacyAnalysis",
    "PromptGuard",
    "RateLimiter",
    "RiskLevel",
    "SecurityEvent",
    "SecurityEventType",
    "SemanticAnalysis",
    "SemanticAnalyzer",
    "Severity",
    "ValidationPipeline",
    "ValidationRequest",
    "ValidationResult",
    "ValidationStage",
    "ValidationThresholds",
    "build_validation_pipeline",
]
