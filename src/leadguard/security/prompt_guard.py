"""Single-pass jailbreak classifier.

Fast, deterministic regex matching against known jailbreak phrasings. It
backs the legacy pipeline stage and is also exposed on its own for call
sites that bypass the full pipeline. These phrasings have a near-zero
false-positive rate, so any match makes the input insecure with high risk.
"""

from __future__ import annotations

import re

from leadguard.logging import get_logger
from leadguard.security.models import LegacyAnalysis, RiskLevel, SecurityEventType

log = get_logger("leadguard.security.prompt_guard")

# Phrases naming the assistant's own persona are allowed after "act as" etc.
_PERSONA_EXEMPT = r"(?!.*sales|.*customer|.*assistant)"

# ---------------------------------------------------------------------------
# Pattern groups: (category, event type, [(compiled_regex, pattern_name)])
# ---------------------------------------------------------------------------

_ROLE_MANIPULATION: list[tuple[re.Pattern[str], str]] = [
    (re.compile(rf"\bact\s+as\s+{_PERSONA_EXEMPT}", re.IGNORECASE), "act_as"),
    (re.compile(rf"\byou\s+are\s+now\s+{_PERSONA_EXEMPT}", re.IGNORECASE), "you_are_now"),
    (re.compile(rf"\bpretend\s+to\s+be\s+{_PERSONA_EXEMPT}", re.IGNORECASE), "pretend_to_be"),
    (re.compile(rf"\broleplay\s+as\s+{_PERSONA_EXEMPT}", re.IGNORECASE), "roleplay_as"),
]

_INSTRUCTION_INJECTION: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(r"\bignore\s+(?:all\s+)?previous\s+instructions?", re.IGNORECASE),
        "ignore_previous",
    ),
    (
        re.compile(r"\bforget\s+(?:all\s+)?previous\s+instructions?", re.IGNORECASE),
        "forget_previous",
    ),
    (re.compile(r"\bsystem\s*:\s*ignore", re.IGNORECASE), "system_ignore"),
    (re.compile(r"\boverride\s+system\s+prompt", re.IGNORECASE), "override_system_prompt"),
    (re.compile(r"\bnew\s+instructions?\s*:", re.IGNORECASE), "new_instructions"),
    (re.compile(r"\bupdated\s+instructions?\s*:", re.IGNORECASE), "updated_instructions"),
    (re.compile(r"\bdeveloper\s+mode", re.IGNORECASE), "developer_mode"),
    (re.compile(r"\badmin\s+mode", re.IGNORECASE), "admin_mode"),
    (re.compile(r"\bdebug\s+mode", re.IGNORECASE), "debug_mode"),
    (re.compile(r"\bmaintenance\s+mode", re.IGNORECASE), "maintenance_mode"),
]

_PROMPT_BOUNDARY: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"```\s*system", re.IGNORECASE), "fenced_system"),
    (re.compile(r"\[/?SYSTEM\]", re.IGNORECASE), "system_tag"),
    (re.compile(r"</?system>", re.IGNORECASE), "system_markup"),
]

_CONTEXT_POISONING: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bend\s+of\s+conversation", re.IGNORECASE), "end_of_conversation"),
    (re.compile(r"\bconversation\s+complete", re.IGNORECASE), "conversation_complete"),
    (re.compile(r"\bsession\s+terminated", re.IGNORECASE), "session_terminated"),
]

_INFORMATION_EXTRACTION: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(r"\bwhat\s+(?:is|are)\s+your\s+instructions?", re.IGNORECASE),
        "ask_instructions",
    ),
    (re.compile(r"\bshow\s+me\s+your\s+prompt", re.IGNORECASE), "show_prompt"),
    (re.compile(r"\bwhat\s+is\s+your\s+system\s+message", re.IGNORECASE), "ask_system_message"),
    (re.compile(r"\brepeat\s+your\s+instructions", re.IGNORECASE), "repeat_instructions"),
    (re.compile(r"\bprint\s+your\s+prompt", re.IGNORECASE), "print_prompt"),
]

_ENCODING_BYPASS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"base64", re.IGNORECASE), "base64_mention"),
    (re.compile(r"&#x[0-9a-f]+;", re.IGNORECASE), "hex_entity"),
    (re.compile(r"\\u[0-9a-f]{4}", re.IGNORECASE), "unicode_escape"),
]

_HARMFUL_CONTENT: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bhow\s+to\s+(?:hack|exploit|attack)", re.IGNORECASE), "how_to_attack"),
    (re.compile(r"\bgenerate\s+(?:malware|virus|exploit)", re.IGNORECASE), "generate_malware"),
]

_PATTERN_GROUPS: list[tuple[str, SecurityEventType, list[tuple[re.Pattern[str], str]]]] = [
    ("role_manipulation", SecurityEventType.ROLE_MANIPULATION, _ROLE_MANIPULATION),
    ("instruction_injection", SecurityEventType.PROMPT_INJECTION, _INSTRUCTION_INJECTION),
    ("prompt_boundary", SecurityEventType.PROMPT_INJECTION, _PROMPT_BOUNDARY),
    ("context_poisoning", SecurityEventType.CONTEXT_SWITCHING, _CONTEXT_POISONING),
    ("information_extraction", SecurityEventType.INFORMATION_EXTRACTION, _INFORMATION_EXTRACTION),
    ("encoding_bypass", SecurityEventType.ENCODING_ATTACK, _ENCODING_BYPASS),
    ("harmful_content", SecurityEventType.PROMPT_INJECTION, _HARMFUL_CONTENT),
]

CATEGORY_EVENT_TYPES: dict[str, SecurityEventType] = {
    category: event_type for category, event_type, _ in _PATTERN_GROUPS
}

# Character-level findings (non-blocking in the pipeline)
_UNICODE_ESCAPE = re.compile(r"\\u[0-9a-f]{4}", re.IGNORECASE)
_HTML_ENTITY = re.compile(r"&#?\w+;", re.IGNORECASE)
_BASE64_RUN = re.compile(r"[A-Za-z0-9+/]{20,}={0,2}")
_SPECIAL_CHAR = re.compile(r"[^a-zA-Z0-9\s.,!?]")

# Sanitizer
_CODE_BLOCK = re.compile(r"```[^`]*```")
_HTML_TAG = re.compile(r"<[^>]*>")
_SYSTEM_BRACKET_BLOCK = re.compile(r"\[SYSTEM\].*?\[/SYSTEM\]", re.IGNORECASE)
_SYSTEM_BRACE_BLOCK = re.compile(r"\{system\}.*?\{/system\}", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

ENCODING_FINDINGS = frozenset({"excessive_unicode", "html_entities", "base64_pattern"})


def match_jailbreak_patterns(content: str) -> dict[str, list[str]]:
    """Run every pattern group against *content*.

    Returns:
        Mapping of category name to the matched text of each hit.
    """
    hits: dict[str, list[str]] = {}
    for category, _, patterns in _PATTERN_GROUPS:
        for pattern, _name in patterns:
            match = pattern.search(content)
            if match:
                hits.setdefault(category, []).append(match.group(0)[:100])
    return hits


def detect_suspicious_chars(content: str) -> list[str]:
    """Return names of character-level anomalies in *content*."""
    findings: list[str] = []

    if len(_UNICODE_ESCAPE.findall(content)) > 3:
        findings.append("excessive_unicode")

    if len(_HTML_ENTITY.findall(content)) > 2:
        findings.append("html_entities")

    if _BASE64_RUN.search(content):
        findings.append("base64_pattern")

    if len(_SPECIAL_CHAR.findall(content)) > len(content) * 0.3:
        findings.append("excessive_special_chars")

    return findings


class PromptGuard:
    """Legacy single-pass input classifier."""

    def __init__(self, max_message_length: int = 2000) -> None:
        self._max_message_length = max_message_length

    def analyze_input(self, content: str, lead_id: int) -> LegacyAnalysis:
        """Analyze user input for jailbreak attempts.

        Args:
            content: User message content.
            lead_id: Lead identifier for logging.

        Returns:
            A :class:`LegacyAnalysis`; ``is_secure`` only when nothing at
            all was detected.
        """
        detected: list[str] = []
        risk_level = RiskLevel.LOW

        categories = match_jailbreak_patterns(content)
        for category, matches in categories.items():
            detected.extend(matches)
            risk_level = RiskLevel.HIGH
            log.warning(
                "jailbreak_pattern_detected",
                lead_id=lead_id,
                category=category,
                matches=matches,
            )

        findings: list[str] = []
        if len(content) > self._max_message_length:
            findings.append("excessive_length")
            log.warning("excessive_message_length", lead_id=lead_id, length=len(content))
        findings.extend(detect_suspicious_chars(content))

        if findings:
            detected.extend(findings)
            risk_level = risk_level.max(RiskLevel.MEDIUM)

        return LegacyAnalysis(
            is_secure=risk_level == RiskLevel.LOW and not detected,
            risk_level=risk_level,
            detected_patterns=detected,
            sanitized_content=self.sanitize(content),
            pattern_categories=categories,
            character_findings=findings,
        )

    def sanitize(self, content: str) -> str:
        """Strip injection markers, normalize whitespace, and truncate."""
        sanitized = _CODE_BLOCK.sub("[code block removed]", content)
        sanitized = _HTML_TAG.sub("", sanitized)
        sanitized = _SYSTEM_BRACKET_BLOCK.sub("", sanitized)
        sanitized = _SYSTEM_BRACE_BLOCK.sub("", sanitized)
        sanitized = _WHITESPACE.sub(" ", sanitized).strip()

        if len(sanitized) > self._max_message_length:
            sanitized = sanitized[: self._max_message_length] + "..."
        return sanitized
