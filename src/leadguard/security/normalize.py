"""Syntactic text cleanup shared by the syntactic and semantic sanitizers.

:func:`clean_syntax` runs until its own output stops changing, so anything it
returns is a fixed point: stripping an encoding cannot leave a fresh one
behind, and repetition is judged on whitespace-normalized text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# (name, pattern, minimum matches); a minimum of None defers to the caller
ENCODING_PATTERNS: list[tuple[str, re.Pattern[str], int | None]] = [
    ("control_characters", re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]"), 1),
    ("zero_width_characters", re.compile(r"[\ufeff\u200b-\u200d\u2060]"), 1),
    ("url_encoding", re.compile(r"%[0-9a-fA-F]{2}"), None),
]

REPETITION = re.compile(r"(.{1,50})\1{5,}")
REPETITION_MARKER = "...[pattern repeated]"

DEFAULT_URL_ENCODING_MIN_COUNT = 5
MAX_PASSES = 10

_WHITESPACE = re.compile(r"\s+")


@dataclass
class SyntaxFindings:
    """What :func:`clean_syntax` removed.

    ``encodings`` maps a pattern name to the match count seen the first time
    it tripped.
    """

    encodings: dict[str, int] = field(default_factory=dict)
    repetition: bool = False


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def strip_encodings(
    text: str, url_encoding_min_count: int, findings: SyntaxFindings
) -> str:
    """Remove every encoding pattern whose count reaches its minimum.

    A pattern is stripped repeatedly while its count stays at or above the
    minimum, so ``%%4141`` does not survive as ``%41``.
    """
    for name, pattern, minimum in ENCODING_PATTERNS:
        threshold = max(1, minimum if minimum is not None else url_encoding_min_count)
        count = len(pattern.findall(text))
        while count >= threshold:
            findings.encodings.setdefault(name, count)
            text = pattern.sub("", text)
            count = len(pattern.findall(text))
    return text


def clean_syntax(
    text: str, url_encoding_min_count: int = DEFAULT_URL_ENCODING_MIN_COUNT
) -> tuple[str, SyntaxFindings]:
    """Strip encodings, normalize whitespace and collapse repetition.

    Returns the cleaned text and what was found along the way.
    """
    findings = SyntaxFindings()
    for _ in range(MAX_PASSES):
        before = text
        text = strip_encodings(text, url_encoding_min_count, findings)
        text = normalize_whitespace(text)
        if REPETITION.search(text):
            findings.repetition = True
            text = REPETITION.sub(lambda m: m.group(1) + REPETITION_MARKER, text)
        if text == before:
            break
    return text, findings
