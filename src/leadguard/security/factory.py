"""Wire a :class:`ValidationPipeline` from settings."""

from __future__ import annotations

import time
from collections.abc import Callable

from leadguard.config import Settings, get_settings
from leadguard.embeddings.adapter import CachedEmbedder
from leadguard.embeddings.clients import EmbeddingsClient, get_embeddings_client
from leadguard.logging import get_logger
from leadguard.security.behavior import BehaviorTracker
from leadguard.security.corpus import AttackPatternCorpus
from leadguard.security.models import ConversationPattern, UserBehaviorProfile
from leadguard.security.pipeline import ValidationPipeline
from leadguard.security.prompt_guard import PromptGuard
from leadguard.security.rate_limiter import RateLimiter
from leadguard.security.semantic import SemanticAnalyzer
from leadguard.security.stages import (
    ContextualStage,
    HistoricalStage,
    LegacyPatternStage,
    SemanticStage,
    SyntacticStage,
    ValidationStageRunner,
)
from leadguard.security.state import KeyedStateStore
from leadguard.security.thresholds import ValidationThresholds

log = get_logger("leadguard.security.factory")


async def build_validation_pipeline(
    settings: Settings | None = None,
    *,
    embeddings_client: EmbeddingsClient | None = None,
    pattern_store: KeyedStateStore[ConversationPattern] | None = None,
    profile_store: KeyedStateStore[UserBehaviorProfile] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> ValidationPipeline:
    """Build the pipeline and embed the attack corpus.

    Args:
        settings: Settings to use; defaults to :func:`get_settings`.
        embeddings_client: Provider client; defaults to the configured backend.
        pattern_store: Store for per-lead indicator windows.
        profile_store: Store for per-lead behaviour profiles.
        clock: Time source for the rate limiter.

    Returns:
        A ready :class:`ValidationPipeline`.
    """
    settings = settings or get_settings()
    thresholds = ValidationThresholds.from_settings(settings)

    embedder = CachedEmbedder(
        embeddings_client or get_embeddings_client(settings),
        dimension=settings.embedding_dimension,
        timeout=settings.embedding_timeout,
    )
    corpus = await AttackPatternCorpus.load(embedder)
    tracker = BehaviorTracker(pattern_store, profile_store, thresholds)

    builders = {
        "syntactic": lambda: SyntacticStage(thresholds),
        "legacy": lambda: LegacyPatternStage(
            PromptGuard(),
            RateLimiter(
                max_messages=thresholds.rate_limit_max_messages,
                window_seconds=thresholds.rate_limit_window_seconds,
                clock=clock,
            ),
        ),
        "semantic": lambda: SemanticStage(SemanticAnalyzer(embedder, corpus, thresholds)),
        "contextual": lambda: ContextualStage(),
        "historical": lambda: HistoricalStage(tracker),
    }
    stages: list[ValidationStageRunner] = [builders[name]() for name in settings.stage_names]

    log.info(
        "validation_pipeline_built",
        stages=[stage.name for stage in stages],
        corpus_version=corpus.version,
        embeddings_backend=settings.embeddings_backend,
    )
    return ValidationPipeline(stages, tracker=tracker, thresholds=thresholds, embedder=embedder)
