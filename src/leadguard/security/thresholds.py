"""Tunable thresholds for the validation pipeline.

These are the main lever for trading false positives against false
negatives. Components receive a frozen instance instead of reading settings
on every request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from leadguard.config import Settings


@dataclass(frozen=True)
class ValidationThresholds:
    """Numeric parameters shared by the validation stages."""

    # Syntactic
    max_message_length: int = 5000
    url_encoding_min_count: int = 5

    # Rate limiting (legacy stage)
    rate_limit_max_messages: int = 10
    rate_limit_window_seconds: float = 60.0

    # Semantic
    similarity_high: float = 0.85
    similarity_medium: float = 0.7
    risk_high: float = 0.7
    risk_medium: float = 0.4
    encoded_keyword_threshold: int = 3

    # Historical / behavioural
    pattern_window: int = 50
    progressive_lookback: int = 10
    progressive_min_distinct: int = 3
    progressive_min_total: int = 5
    anomaly_min_messages: int = 5
    length_anomaly_factor: float = 3.0
    sudden_suspicious_max_risk: float = 0.1
    sudden_suspicious_min_indicators: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> ValidationThresholds:
        """Build thresholds from application settings."""
        return cls(
            max_message_length=settings.security_max_message_length,
            url_encoding_min_count=settings.security_url_encoding_min_count,
            rate_limit_max_messages=settings.security_rate_limit_max_messages,
            rate_limit_window_seconds=settings.security_rate_limit_window_seconds,
            similarity_high=settings.security_similarity_high,
            similarity_medium=settings.security_similarity_medium,
            risk_high=settings.security_risk_high,
            risk_medium=settings.security_risk_medium,
            encoded_keyword_threshold=settings.security_encoded_keyword_threshold,
            pattern_window=settings.security_pattern_window,
            progressive_lookback=settings.security_progressive_lookback,
            progressive_min_distinct=settings.security_progressive_min_distinct,
            progressive_min_total=settings.security_progressive_min_total,
            anomaly_min_messages=settings.security_anomaly_min_messages,
            length_anomaly_factor=settings.security_length_anomaly_factor,
            sudden_suspicious_max_risk=settings.security_sudden_suspicious_max_risk,
            sudden_suspicious_min_indicators=settings.security_sudden_suspicious_min_indicators,
        )
