"""
Post-processing of student-work lines.

Two stages, each a pure ``list[RecognizedLine] -> list[RecognizedLine]``
transform:

1. Splitting: a line whose text still holds several rows joined by the
   LaTeX row separator is split into one line per row, with the original
   height shared evenly between them.
2. Filtering: lines from the primary strategy pass an inclusion filter
   that keeps equations and short numeric answers and drops footers,
   page numbers, margin noise and unclassified prose. Lines that already
   passed the math-likeness gate of the fallback strategy bypass it.

The filter is biased toward precision: ambiguous text is dropped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from markscan.config import FilterConfig, MarginConfig
from markscan.exceptions import GeometryInvalidError
from markscan.geometry import in_margin, split_vertically
from markscan.models import ImageDimensions, RecognizedLine

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

# LaTeX row separator left in text when several rows were read as one line
MERGED_LINE_MARKER = "\\\\"

# Display-math and array wrappers removed before splitting
ARRAY_MARKUP_PATTERN = re.compile(r"\\\[|\\\]|\\begin\{array\}\{[^}]*\}|\\end\{array\}")

PAGE_NUMBER_PATTERN = re.compile(r"^\s*\d+\s*$")
DIGIT_PATTERN = re.compile(r"\d")
OPERATOR_UNIT_PATTERN = re.compile(r"[+\-^*/÷×nxyz£$€]")
INLINE_MATH_PATTERN = re.compile(r"\\text\{.*?\}|\\\(|\\\)")
STANDALONE_NUMBER_PATTERN = re.compile(r"^\s*[£$€]?[\d.,]+\s*$")


class FilterRule(Enum):
    """Inclusion filter outcome, for logging and diagnostics."""

    EMPTY = "discard_empty"
    FOOTER = "discard_footer"
    PAGE_NUMBER = "discard_page_number"
    EQUATION = "keep_equation"
    MATH_EXPRESSION = "keep_math_expression"
    STANDALONE_NUMBER = "keep_standalone_number"
    MARGIN = "discard_margin"
    AMBIGUOUS = "discard_ambiguous"

    @property
    def keeps(self) -> bool:
        return self.value.startswith("keep")


# =============================================================================
# SPLITTING
# =============================================================================


def split_merged_line(line: RecognizedLine) -> list[RecognizedLine]:
    """
    Split a line holding several rows into one line per row.

    Each fragment keeps the original x and width; y and height are
    distributed evenly so fragment heights sum to the original height.
    """
    if MERGED_LINE_MARKER not in line.text:
        return [line]

    cleaned = ARRAY_MARKUP_PATTERN.sub("", line.text).strip()
    parts = [part.strip() for part in cleaned.split(MERGED_LINE_MARKER)]
    parts = [part for part in parts if part]
    if not parts:
        return []

    logger.debug("Splitting merged line into %d rows: %r", len(parts), line.text[:60])
    try:
        regions = split_vertically(line.region, len(parts))
    except GeometryInvalidError as e:
        logger.debug("Cannot split %r: %s", line.text[:60], e)
        return [line]
    return [line.with_geometry(text, region) for text, region in zip(parts, regions)]


def split_merged_lines(lines: list[RecognizedLine]) -> list[RecognizedLine]:
    result: list[RecognizedLine] = []
    for line in lines:
        result.extend(split_merged_line(line))
    return result


# =============================================================================
# FILTERING
# =============================================================================


class InclusionFilter:
    """
    Decides whether a recognized line is student work.

    Rules are evaluated in order; the first that applies wins:
    1. Discard empty text, the question footer and bare page numbers.
    2. Keep equations, short numeric expressions and standalone numbers.
    3. Discard anything else, reporting margin noise separately.
    """

    def __init__(self, config: FilterConfig | None = None, margin: MarginConfig | None = None):
        self.config = config or FilterConfig()
        self.margin = margin or MarginConfig()

    def classify(self, line: RecognizedLine, dimensions: ImageDimensions) -> FilterRule:
        text = line.text.strip()
        if not text:
            return FilterRule.EMPTY

        if self.config.footer_marker in text.lower():
            return FilterRule.FOOTER
        if PAGE_NUMBER_PATTERN.match(text) and len(text) <= self.config.max_page_number_length:
            return FilterRule.PAGE_NUMBER

        if "=" in text:
            return FilterRule.EQUATION
        if DIGIT_PATTERN.search(text) and OPERATOR_UNIT_PATTERN.search(text):
            if len(text.split()) < self.config.max_math_expression_words:
                return FilterRule.MATH_EXPRESSION
        unwrapped = INLINE_MATH_PATTERN.sub("", text)
        if STANDALONE_NUMBER_PATTERN.match(unwrapped):
            if len(text) < self.config.max_standalone_number_length:
                return FilterRule.STANDALONE_NUMBER

        if in_margin(line.region, dimensions, self.margin):
            return FilterRule.MARGIN
        return FilterRule.AMBIGUOUS

    def keep(self, line: RecognizedLine, dimensions: ImageDimensions) -> bool:
        rule = self.classify(line, dimensions)
        if not rule.keeps:
            logger.debug("Filter %s: %r", rule.value, line.text[:60])
        return rule.keeps


@dataclass
class PostProcessResult:
    """Output of the post-processor."""

    lines: list[RecognizedLine]
    dropped: list[tuple[RecognizedLine, FilterRule]] = field(default_factory=list)


class LinePostProcessor:
    """
    Splits merged rows and filters non-work lines.

    Usage:
        post = LinePostProcessor()
        result = post.process(student_lines, dimensions)
    """

    def __init__(self, config: FilterConfig | None = None, margin: MarginConfig | None = None):
        self.filter = InclusionFilter(config, margin)

    def process(
        self, lines: list[RecognizedLine], dimensions: ImageDimensions
    ) -> PostProcessResult:
        """
        Split, then filter lines following the question boundary.

        Args:
            lines: Lines after the boundary cut.
            dimensions: Image size for margin checks.

        Returns:
            PostProcessResult with kept lines and dropped lines with their rule.
        """
        kept: list[RecognizedLine] = []
        dropped: list[tuple[RecognizedLine, FilterRule]] = []

        for line in split_merged_lines(lines):
            if line.math_gated:
                if line.text.strip():
                    kept.append(line)
                else:
                    dropped.append((line, FilterRule.EMPTY))
                continue

            rule = self.filter.classify(line, dimensions)
            if rule.keeps:
                kept.append(line)
            else:
                logger.debug("Filter %s: %r", rule.value, line.text[:60])
                dropped.append((line, rule))

        logger.info("Post-processing kept %d lines, dropped %d", len(kept), len(dropped))
        return PostProcessResult(lines=kept, dropped=dropped)
