"""Embedding-backed semantic threat analysis.

Combines cosine similarity against the attack corpus with regex
sub-detectors for context switching, role manipulation, encoding tricks and
information extraction. Each detector contributes independently scored
:class:`ThreatDetection` entries which are then folded into a single risk
score.
"""

from __future__ import annotations

import base64
import binascii
import re

from leadguard.embeddings.adapter import CachedEmbedder, cosine_similarity
from leadguard.logging import get_logger
from leadguard.security.corpus import AttackPatternCorpus
from leadguard.security.models import (
    RiskLevel,
    SecurityEventType,
    SemanticAnalysis,
    Severity,
    ThreatDetection,
)
from leadguard.security.normalize import (
    DEFAULT_URL_ENCODING_MIN_COUNT,
    MAX_PASSES,
    clean_syntax,
)
from leadguard.security.thresholds import ValidationThresholds

log = get_logger("leadguard.security.semantic")

# ---------------------------------------------------------------------------
# Regex sub-detectors: (compiled_regex, confidence)
# ---------------------------------------------------------------------------

_CONTEXT_SWITCH_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"in a hypothetical scenario", re.IGNORECASE),
    re.compile(r"let's pretend", re.IGNORECASE),
    re.compile(r"imagine if", re.IGNORECASE),
    re.compile(r"what if you were", re.IGNORECASE),
    re.compile(r"in an alternate universe", re.IGNORECASE),
    re.compile(r"roleplay as", re.IGNORECASE),
]
_CONTEXT_SWITCH_CONFIDENCE = 0.8

_ROLE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"you are no longer", re.IGNORECASE),
    re.compile(r"forget that you are", re.IGNORECASE),
    re.compile(r"stop being", re.IGNORECASE),
    re.compile(r"instead of being", re.IGNORECASE),
    re.compile(r"rather than acting as", re.IGNORECASE),
]
_ROLE_CONFIDENCE = 0.9

_EXTRACTION_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"what.*your.*prompt", re.IGNORECASE),
    re.compile(r"show.*system.*message", re.IGNORECASE),
    re.compile(r"reveal.*instructions", re.IGNORECASE),
    re.compile(r"print.*configuration", re.IGNORECASE),
    re.compile(r"display.*settings", re.IGNORECASE),
    re.compile(r"output.*prompt", re.IGNORECASE),
    re.compile(r"list.*commands", re.IGNORECASE),
    re.compile(r"show.*rules", re.IGNORECASE),
]
_EXTRACTION_CONFIDENCE = 0.85

# Encoding detectors
_BASE64_RUN = re.compile(r"[A-Za-z0-9+/]{20,}={0,2}")
_URL_ENCODED = re.compile(r"%[0-9a-fA-F]{2}")
_UNICODE_ESCAPE = re.compile(r"\\u[0-9a-fA-F]{4}")

DECODED_JAILBREAK_KEYWORDS: tuple[str, ...] = (
    "ignore",
    "previous",
    "instructions",
    "forget",
    "system",
    "prompt",
    "override",
    "developer",
    "admin",
    "debug",
    "maintenance",
    "mode",
)

SEVERITY_WEIGHTS: dict[Severity, float] = {
    Severity.LOW: 1.0,
    Severity.MEDIUM: 1.2,
    Severity.HIGH: 1.5,
    Severity.CRITICAL: 1.5,
}

# Sanitizer
_CODE_BLOCK = re.compile(r"```[^`]*```")
_HTML_TAG = re.compile(r"<[^>]*>")
_SYSTEM_BRACKET_BLOCK = re.compile(r"\[SYSTEM\].*?\[/SYSTEM\]", re.IGNORECASE)
_SYSTEM_BRACE_BLOCK = re.compile(r"\{system\}.*?\{/system\}", re.IGNORECASE)
_UNICODE_ESCAPE_RUN = re.compile(r"(?:\\u[0-9a-fA-F]{4}){3,}")
MAX_SANITIZED_LENGTH = 2000


def count_decoded_keywords(decoded: str) -> int:
    """Count distinct jailbreak keywords present in decoded text."""
    lowered = decoded.lower()
    return sum(1 for keyword in DECODED_JAILBREAK_KEYWORDS if keyword in lowered)


def _decode_base64_run(run: str) -> str | None:
    padded = run + "=" * (-len(run) % 4)
    try:
        return base64.b64decode(padded).decode("utf-8", errors="ignore")
    except (binascii.Error, ValueError):
        log.debug("base64_run_undecodable", run_length=len(run))
        return None


def aggregate_risk(threats: list[ThreatDetection]) -> float:
    """0.7 * mean(severity-weighted confidence) + 0.3 * max(confidence), capped at 1."""
    if not threats:
        return 0.0

    total = 0.0
    max_confidence = 0.0
    for threat in threats:
        total += threat.confidence * SEVERITY_WEIGHTS[threat.severity]
        max_confidence = max(max_confidence, threat.confidence)

    average = total / len(threats)
    return min(average * 0.7 + max_confidence * 0.3, 1.0)


def explain(threats: list[ThreatDetection], risk_score: float) -> str:
    """Build a human-readable summary of an analysis."""
    if not threats:
        return "No security threats detected. Content appears safe."

    high = [t.type.value for t in threats if t.severity in (Severity.HIGH, Severity.CRITICAL)]
    medium = [t.type.value for t in threats if t.severity == Severity.MEDIUM]

    parts = [f"Security analysis detected {len(threats)} potential threat(s)."]
    if high:
        parts.append(f"High-risk threats: {', '.join(high)}.")
    if medium:
        parts.append(f"Medium-risk threats: {', '.join(medium)}.")
    parts.append(f"Overall risk score: {risk_score * 100:.1f}%.")
    return " ".join(parts)


def sanitize(
    content: str, url_encoding_min_count: int = DEFAULT_URL_ENCODING_MIN_COUNT
) -> str:
    """Replace code blocks, markup, system tags and encoded runs with placeholders.

    The result is capped at :data:`MAX_SANITIZED_LENGTH` characters and passed
    through :func:`~leadguard.security.normalize.clean_syntax`. Removing a tag
    can join text into a new repetition or percent escape, so both steps run
    together until nothing changes; applying ``sanitize`` to its own output
    is a no-op.
    """
    sanitized = content
    for _ in range(MAX_PASSES):
        before = sanitized
        sanitized = _CODE_BLOCK.sub("[code block removed]", sanitized)
        sanitized = _HTML_TAG.sub("", sanitized)
        sanitized = _SYSTEM_BRACKET_BLOCK.sub("[system tag removed]", sanitized)
        sanitized = _SYSTEM_BRACE_BLOCK.sub("[system tag removed]", sanitized)
        sanitized = _BASE64_RUN.sub("[encoded content removed]", sanitized)
        sanitized = _UNICODE_ESCAPE_RUN.sub("[unicode content removed]", sanitized)
        sanitized, _ = clean_syntax(sanitized[:MAX_SANITIZED_LENGTH], url_encoding_min_count)
        if sanitized == before:
            break
    return sanitized



class SemanticAnalyzer:
    """Scores a message against the attack corpus and regex sub-detectors."""

    def __init__(
        self,
        embedder: CachedEmbedder,
        corpus: AttackPatternCorpus,
        thresholds: ValidationThresholds | None = None,
    ) -> None:
        self._embedder = embedder
        self._corpus = corpus
        self._thresholds = thresholds or ValidationThresholds()

    @property
    def corpus(self) -> AttackPatternCorpus:
        return self._corpus

    async def analyze(self, content: str, lead_id: int | None = None) -> SemanticAnalysis:
        """Run every detector over *content*.

        Args:
            content: Message text, usually already syntactically sanitized.
            lead_id: Lead identifier for logging.

        Returns:
            The aggregated :class:`SemanticAnalysis`.
        """
        vector = await self._embedder.embed(content)

        threats = self.detect_similarity(vector)
        threats.extend(self.detect_contextual(content))
        threats.extend(self.detect_encoding(content))
        threats.extend(self.detect_extraction(content))

        risk_score = aggregate_risk(threats)
        risk_level = RiskLevel.from_score(
            risk_score,
            high=self._thresholds.risk_high,
            medium=self._thresholds.risk_medium,
        )
        analysis = SemanticAnalysis(
            is_secure=risk_level == RiskLevel.LOW and risk_score < 0.3,
            risk_score=risk_score,
            risk_level=risk_level,
            threats=threats,
            explanation=explain(threats, risk_score),
            sanitized_content=sanitize(content, self._thresholds.url_encoding_min_count),
        )

        if not analysis.is_secure:
            log.warning(
                "semantic_threat_detected",
                lead_id=lead_id,
                risk_level=risk_level.value,
                risk_score=round(risk_score, 3),
                threats=len(threats),
            )
        return analysis

    def detect_similarity(self, vector: list[float]) -> list[ThreatDetection]:
        """Record every corpus phrase the message vector is close to."""
        threats: list[ThreatDetection] = []
        for entry in self._corpus:
            similarity = cosine_similarity(vector, entry.vector)
            if similarity <= self._thresholds.similarity_medium:
                continue
            severity = (
                Severity.HIGH if similarity > self._thresholds.similarity_high else Severity.MEDIUM
            )
            threats.append(
                ThreatDetection(
                    type=entry.threat_type,
                    confidence=similarity,
                    pattern=entry.phrase,
                    severity=severity,
                )
            )
        return threats

    def detect_contextual(self, content: str) -> list[ThreatDetection]:
        """Context-switch and role-manipulation phrasing."""
        threats = [
            ThreatDetection(
                type=SecurityEventType.CONTEXT_SWITCHING,
                confidence=_CONTEXT_SWITCH_CONFIDENCE,
                pattern=pattern.pattern,
                severity=Severity.MEDIUM,
            )
            for pattern in _CONTEXT_SWITCH_PATTERNS
            if pattern.search(content)
        ]
        threats.extend(
            ThreatDetection(
                type=SecurityEventType.ROLE_MANIPULATION,
                confidence=_ROLE_CONFIDENCE,
                pattern=pattern.pattern,
                severity=Severity.HIGH,
            )
            for pattern in _ROLE_PATTERNS
            if pattern.search(content)
        )
        return threats

    def detect_encoding(self, content: str) -> list[ThreatDetection]:
        """Decoded base64 payloads and dense escape sequences."""
        threats: list[ThreatDetection] = []

        for run in _BASE64_RUN.findall(content):
            decoded = _decode_base64_run(run)
            if decoded is None:
                continue
            if count_decoded_keywords(decoded) >= self._thresholds.encoded_keyword_threshold:
                threats.append(
                    ThreatDetection(
                        type=SecurityEventType.ENCODING_ATTACK,
                        confidence=0.95,
                        pattern="base64_encoded_injection",
                        severity=Severity.HIGH,
                    )
                )

        if len(_URL_ENCODED.findall(content)) > self._thresholds.url_encoding_min_count:
            threats.append(
                ThreatDetection(
                    type=SecurityEventType.ENCODING_ATTACK,
                    confidence=0.7,
                    pattern="url_encoding_attack",
                    severity=Severity.MEDIUM,
                )
            )

        if len(_UNICODE_ESCAPE.findall(content)) > 3:
            threats.append(
                ThreatDetection(
                    type=SecurityEventType.ENCODING_ATTACK,
                    confidence=0.8,
                    pattern="unicode_escape_attack",
                    severity=Severity.MEDIUM,
                )
            )

        return threats

    def detect_extraction(self, content: str) -> list[ThreatDetection]:
        """Requests to reveal prompts, instructions or configuration."""
        return [
            ThreatDetection(
                type=SecurityEventType.INFORMATION_EXTRACTION,
                confidence=_EXTRACTION_CONFIDENCE,
                pattern=pattern.pattern,
                severity=Severity.HIGH,
            )
            for pattern in _EXTRACTION_PATTERNS
            if pattern.search(content)
        ]
