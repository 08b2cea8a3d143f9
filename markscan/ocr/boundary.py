"""
Question/answer boundary detection.

Finds the index of the first line of student work in the full-page line
list. Two heuristics run in order:

1. Fuzzy match: every recognized line is compared with each line of the
   known question transcript. The boundary is one past the LAST line
   whose best similarity reaches the threshold, so a stray match further
   up the page cannot cut into the answer.
2. Keyword fallback: when nothing matches, the last prose line carrying
   an instruction verb ("work out", "calculate", ...) and no ``=`` marks
   the end of the question.

The cut applies to both recognition strategies. Fallback lines arrive
in crop order, so the pipeline sorts them into reading order first and
the last-match rule sees page order.

Known limitation: the printed question is assumed to be a contiguous
prefix. Pages interleaving printed sub-parts with handwritten work are
not split per sub-part.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from rapidfuzz import fuzz, process

from markscan.config import BoundaryConfig
from markscan.models import BoundaryMethod, RecognizedLine

logger = logging.getLogger(__name__)


@dataclass
class BoundaryResult:
    """Where student work starts, and how that was decided."""

    index: int
    method: BoundaryMethod
    matched_indices: list[int] = field(default_factory=list)


def normalize_for_matching(text: str) -> str:
    """Lowercase and collapse whitespace."""
    return " ".join(text.lower().split())


def split_transcript(question_text: str | None) -> list[str]:
    """Non-empty trimmed lines of a question transcript."""
    if not question_text:
        return []
    return [line.strip() for line in question_text.splitlines() if line.strip()]


class BoundaryDetector:
    """
    Separates printed question lines from student work.

    Usage:
        detector = BoundaryDetector()
        result = detector.detect(lines, question_text)
        student_lines = lines[result.index:]
    """

    def __init__(self, config: BoundaryConfig | None = None):
        self.config = config or BoundaryConfig()

    def _fuzzy_matches(self, lines: list[RecognizedLine], question_lines: list[str]) -> list[int]:
        """Indices of lines whose best similarity (normalized Indel) reaches the threshold."""
        choices = [normalize_for_matching(q) for q in question_lines]
        matched = []
        cutoff = self.config.similarity_threshold * 100
        for i, line in enumerate(lines):
            text = normalize_for_matching(line.text)
            if not text:
                continue
            best = process.extractOne(text, choices, scorer=fuzz.ratio, score_cutoff=cutoff)
            if best is not None:
                logger.debug(
                    "Question line match at %d (similarity %.2f): %r",
                    i,
                    best[1] / 100.0,
                    line.text[:60],
                )
                matched.append(i)
        return matched

    def _last_instruction(self, lines: list[RecognizedLine]) -> int | None:
        for i in range(len(lines) - 1, -1, -1):
            text = lines[i].text.lower()
            if "=" in text:
                continue
            if len(text.split()) < self.config.min_instruction_words:
                continue
            if any(keyword in text for keyword in self.config.instruction_keywords):
                logger.debug("Instruction line at %d: %r", i, lines[i].text[:60])
                return i
        return None

    def detect(self, lines: list[RecognizedLine], question_text: str | None) -> BoundaryResult:
        """
        Find the index where student work begins.

        Args:
            lines: Full-page lines in page order.
            question_text: Known question transcript, if any.

        Returns:
            BoundaryResult whose index is within [0, len(lines)].
            An index equal to len(lines) means the page is question only.
        """
        question_lines = split_transcript(question_text)
        if not question_lines:
            logger.debug("No question transcript; treating all lines as student work")
            return BoundaryResult(index=0, method=BoundaryMethod.NONE)

        matched = self._fuzzy_matches(lines, question_lines)
        if matched:
            index = matched[-1] + 1
            method = BoundaryMethod.FUZZY
        else:
            instruction = self._last_instruction(lines)
            if instruction is None:
                logger.info("No question lines found; treating all lines as student work")
                return BoundaryResult(index=0, method=BoundaryMethod.NONE)
            index = instruction + 1
            method = BoundaryMethod.KEYWORD

        index = max(0, min(index, len(lines)))
        logger.info("Student work starts at line %d (%s)", index, method.value)
        return BoundaryResult(index=index, method=method, matched_indices=matched)
