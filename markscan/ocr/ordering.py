"""
Reading-order sorting.

Two lines whose vertical extents overlap by at least ``threshold`` of
either line's own height sit on the same row and are ordered left to
right; all other pairs are ordered top to bottom.
"""

from __future__ import annotations

from functools import cmp_to_key

from markscan.config import PRIMARY_ROW_OVERLAP
from markscan.geometry import vertical_overlap
from markscan.models import RecognizedLine


def same_row(a: RecognizedLine, b: RecognizedLine, threshold: float) -> bool:
    overlap = vertical_overlap(a.region, b.region)
    if overlap <= 0:
        return False
    return overlap / a.region.height >= threshold or overlap / b.region.height >= threshold


def compare_reading_order(a: RecognizedLine, b: RecognizedLine, threshold: float) -> int:
    """Negative if ``a`` reads before ``b``, positive if after, 0 if tied."""
    if same_row(a, b, threshold):
        delta = a.region.x - b.region.x
    else:
        delta = a.region.y - b.region.y
    if delta < 0:
        return -1
    if delta > 0:
        return 1
    return 0


def sort_reading_order(
    lines: list[RecognizedLine], threshold: float = PRIMARY_ROW_OVERLAP
) -> list[RecognizedLine]:
    """
    Return the lines in natural reading order.

    The sort is stable: lines that compare equal keep their input order.

    Args:
        lines: Lines to order.
        threshold: Same-row overlap fraction (0.30 primary, 0.10 fallback).
    """
    return sorted(lines, key=cmp_to_key(lambda a, b: compare_reading_order(a, b, threshold)))
