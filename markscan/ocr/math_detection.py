"""
Math-likeness scoring for layout fragments.

The fallback strategy only re-recognizes fragments that look like
mathematics. Scoring counts feature occurrences (operators, numbers,
brackets, Greek letters, function names, ...) at 0.1 each, capped at 1.0;
short prose made only of common English words scores 0.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from markscan.backends.base import VisionFragment
from markscan.config import MATH_LIKENESS_THRESHOLD
from markscan.exceptions import GeometryInvalidError
from markscan.models import Rect

logger = logging.getLogger(__name__)

FEATURE_WEIGHT = 0.1

ENGLISH_ONLY_PATTERN = re.compile(r"^[a-zA-Z\s]+$")

COMMON_ENGLISH_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "question", "answer", "find", "calculate", "solve", "show", "prove", "given",
    }
)  # fmt: skip

MATH_FEATURES = (
    re.compile(r"[=≠≈≤≥]"),
    re.compile(r"[+\-×÷*/]"),
    re.compile(r"\b\d+\b"),
    re.compile(r"[()\[\]{}]"),
    re.compile(r"\|.*\|"),
    re.compile(r"[√∑∫πθλαβγδεζηικμνξορστυφχψω]"),
    re.compile(r"\b\w\^\d"),
    re.compile(r"\b\w_\d"),
    re.compile(r"\b(?:sin|cos|tan|log|ln|exp|sqrt|abs|max|min|lim|sum|prod|int)\b"),
    re.compile(r"∞|\b(?:infinity|inf)\b"),
    re.compile(r"\b(?:pi|e|phi|gamma|alpha|beta|theta|lambda|mu|sigma|omega)\b"),
    re.compile(r"\b(?:and|or|not|implies|iff|forall|exists)\b"),
    re.compile(
        r"\b(?:if|then|else|when|where|given|let|assume|suppose|prove|show|find|solve|calculate)\b"
    ),
)

OPERATOR_PATTERN = re.compile(r"[+\-×÷*/=]")


@dataclass(frozen=True)
class MathCandidate:
    """A layout fragment selected for math re-recognition."""

    text: str
    region: Rect
    confidence: float
    score: float
    suspicious: bool


def score_math_likeness(text: str) -> float:
    """
    Score how mathematical a piece of text looks.

    Args:
        text: Fragment text.

    Returns:
        Score in [0, 1].
    """
    stripped = (text or "").strip()
    if not stripped:
        return 0.0

    if ENGLISH_ONLY_PATTERN.match(stripped) and len(text) > 3:
        words = stripped.lower().split()
        if all(word in COMMON_ENGLISH_WORDS for word in words):
            return 0.0

    score = sum(len(feature.findall(text)) * FEATURE_WEIGHT for feature in MATH_FEATURES)
    return min(1.0, score)


def is_suspicious(text: str) -> bool:
    """
    Flag fragments the layout recognizer probably misread.

    A lone ``|`` or an operator-heavy string without digits usually means
    handwriting was read as symbols.
    """
    pipes = text.count("|")
    operators = len(OPERATOR_PATTERN.findall(text))
    has_digit = any(ch.isdigit() for ch in text)
    return pipes == 1 or (operators > 2 and not has_digit)


def detect_math_candidates(
    fragments: list[VisionFragment],
    threshold: float = MATH_LIKENESS_THRESHOLD,
    page_confidence: float | None = None,
) -> list[MathCandidate]:
    """
    Select fragments whose math-likeness reaches the threshold.

    A fragment without its own confidence takes ``page_confidence``, then
    its math-likeness score. Fragments with unusable geometry are dropped.
    """
    candidates = []
    for fragment in fragments:
        score = score_math_likeness(fragment.text)
        if score < threshold:
            continue
        try:
            region = fragment.geometry.to_rect()
        except GeometryInvalidError as e:
            logger.debug("Dropping fragment %r: %s", fragment.text[:40], e)
            continue
        candidates.append(
            MathCandidate(
                text=fragment.text,
                region=region,
                confidence=fragment.confidence or page_confidence or score,
                score=score,
                suspicious=is_suspicious(fragment.text),
            )
        )
    return candidates


def crop_signature(rect: Rect) -> tuple[int, int, int, int]:
    """Integer (left, top, width, height) used to deduplicate crops."""
    return (
        max(0, math.floor(rect.x)),
        max(0, math.floor(rect.y)),
        max(1, math.floor(rect.width)),
        max(1, math.floor(rect.height)),
    )


def mean_confidence(fragments: list[VisionFragment]) -> float | None:
    """Mean fragment confidence for the page, or None with no fragments."""
    if not fragments:
        return None
    return sum(f.confidence for f in fragments) / len(fragments)
