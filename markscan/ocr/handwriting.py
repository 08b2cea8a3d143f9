"""
Handwriting tagging by spatial overlap.

A line counts as handwritten when some handwriting region covers at least
``threshold`` of the line's own box area. Regions come from an independent
detector call and are usually coarser than single lines, so coverage is
measured against the line rather than as intersection-over-union.
"""

from __future__ import annotations

import logging

from markscan.config import HANDWRITING_COVERAGE_THRESHOLD
from markscan.geometry import intersection_area
from markscan.models import Rect, RecognizedLine

logger = logging.getLogger(__name__)


def handwriting_coverage(line: RecognizedLine, regions: list[Rect]) -> float:
    """Largest fraction of the line's area covered by a single region."""
    if not regions:
        return 0.0
    best = max(intersection_area(line.region, region) for region in regions)
    return best / line.region.area


def correlate_handwriting(
    lines: list[RecognizedLine],
    regions: list[Rect],
    threshold: float = HANDWRITING_COVERAGE_THRESHOLD,
) -> list[RecognizedLine]:
    """
    Tag each line as handwritten or not.

    A line already tagged handwritten upstream stays handwritten.

    Args:
        lines: Final candidate lines.
        regions: Handwriting regions from the detector.
        threshold: Minimum coverage of the line's own area.

    Returns:
        New list of lines with ``is_handwritten`` set.
    """
    tagged = []
    for line in lines:
        coverage = handwriting_coverage(line, regions)
        is_handwritten = coverage >= threshold or line.is_handwritten is True
        tagged.append(line.with_handwriting(is_handwritten))

    logger.debug(
        "Handwriting: %d of %d lines tagged",
        sum(1 for line in tagged if line.is_handwritten),
        len(tagged),
    )
    return tagged
