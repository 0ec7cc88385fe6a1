"""Validation stages, in canonical pipeline order."""

from leadguard.security.stages.base import ValidationStageRunner, make_event, stage_risk
from leadguard.security.stages.contextual import ContextualStage
from leadguard.security.stages.historical import HistoricalStage
from leadguard.security.stages.legacy import LegacyPatternStage
from leadguard.security.stages.semantic import SemanticStage
from leadguard.security.stages.syntactic import SyntacticStage

__all__ = [
    "ContextualStage",
    "HistoricalStage",
    "LegacyPatternStage",
    "SemanticStage",
    "SyntacticStage",
    "ValidationStageRunner",
    "make_event",
    "stage_risk",
]
