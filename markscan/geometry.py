"""
Bounding-box normalization and rectangle arithmetic.

Recognition backends describe line locations in several shapes:
- ``region`` with ``top_left_x``/``top_left_y`` (or camelCase) and size
- ``region`` with ``x``/``y`` and ``w``/``width``, ``h``/``height``
- flat ``x``/``y``/``width``/``height`` on the line itself
- a contour (``cnt``, ``contours`` or ``points``) of ``[x, y]`` or ``{x, y}``

Each shape is handled by one RectExtractor. normalize_rect() tries them
in order and returns the first valid Rect, or None when nothing matches.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from markscan.config import MarginConfig
from markscan.exceptions import GeometryInvalidError
from markscan.models import ImageDimensions, Rect

logger = logging.getLogger(__name__)


def _get(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _number(value: Any) -> float | None:
    """Coerce to a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _first_number(obj: Any, *keys: str) -> float | None:
    for key in keys:
        number = _number(_get(obj, key))
        if number is not None:
            return number
    return None


# =============================================================================
# EXTRACTORS
# =============================================================================


class RectExtractor(ABC):
    """Abstract base for one bounding-box representation."""

    name: str = "base"

    @abstractmethod
    def extract(self, line: Any) -> Rect | None:
        """Return a Rect, or None if this representation is absent.

        May raise GeometryInvalidError if the values are present but
        describe a degenerate rectangle.
        """
        pass


class TopLeftRegionExtractor(RectExtractor):
    """``region.top_left_x/top_left_y/width/height`` (snake or camel case)."""

    name = "region_top_left"

    def extract(self, line: Any) -> Rect | None:
        region = _get(line, "region")
        x = _first_number(region, "top_left_x", "topLeftX")
        y = _first_number(region, "top_left_y", "topLeftY")
        width = _first_number(region, "width")
        height = _first_number(region, "height")
        if None in (x, y, width, height):
            return None
        return Rect(x, y, width, height)


class XYRegionExtractor(RectExtractor):
    """``region.x/y`` with ``w``/``width`` and ``h``/``height``."""

    name = "region_xy"

    def extract(self, line: Any) -> Rect | None:
        region = _get(line, "region")
        x = _first_number(region, "x")
        y = _first_number(region, "y")
        width = _first_number(region, "w", "width")
        height = _first_number(region, "h", "height")
        if None in (x, y, width, height):
            return None
        return Rect(x, y, width, height)


class FlatExtractor(RectExtractor):
    """``x/y/width/height`` directly on the line."""

    name = "flat"

    def extract(self, line: Any) -> Rect | None:
        x = _first_number(line, "x")
        y = _first_number(line, "y")
        width = _first_number(line, "width")
        height = _first_number(line, "height")
        if None in (x, y, width, height):
            return None
        return Rect(x, y, width, height)


class ContourExtractor(RectExtractor):
    """Axis-aligned bounds of a point contour."""

    name = "contour"

    def extract(self, line: Any) -> Rect | None:
        points = _get(line, "cnt") or _get(line, "contours") or _get(line, "points")
        if not isinstance(points, (list, tuple)) or not points:
            return None

        xs: list[float] = []
        ys: list[float] = []
        for point in points:
            if isinstance(point, (list, tuple)):
                if len(point) < 2:
                    continue
                px, py = _number(point[0]), _number(point[1])
            else:
                px, py = _number(_get(point, "x")), _number(_get(point, "y"))
            if px is None or py is None:
                continue
            xs.append(px)
            ys.append(py)

        if not xs:
            return None
        return Rect.from_corners(min(xs), min(ys), max(xs), max(ys))


DEFAULT_EXTRACTORS: tuple[RectExtractor, ...] = (
    TopLeftRegionExtractor(),
    XYRegionExtractor(),
    FlatExtractor(),
    ContourExtractor(),
)


def normalize_rect(
    line: Any,
    extractors: tuple[RectExtractor, ...] = DEFAULT_EXTRACTORS,
) -> Rect | None:
    """
    Extract a canonical Rect from a backend line/region object.

    Args:
        line: Backend line object (mapping or attribute object).
        extractors: Representations to try, in order.

    Returns:
        The first valid Rect, or None if no representation matches.
    """
    for extractor in extractors:
        try:
            rect = extractor.extract(line)
        except GeometryInvalidError as e:
            logger.debug("Extractor %s rejected geometry: %s", extractor.name, e)
            continue
        if rect is not None:
            return rect
    return None


# =============================================================================
# RECTANGLE ARITHMETIC
# =============================================================================


def vertical_overlap(a: Rect, b: Rect) -> float:
    """Length of the overlap of the ``[y, bottom]`` intervals (may be negative)."""
    return min(a.bottom, b.bottom) - max(a.y, b.y)


def intersection_area(a: Rect, b: Rect) -> float:
    width = min(a.right, b.right) - max(a.x, b.x)
    height = min(a.bottom, b.bottom) - max(a.y, b.y)
    if width <= 0 or height <= 0:
        return 0.0
    return width * height


def intersects(a: Rect, b: Rect) -> bool:
    return a.x < b.right and a.right > b.x and a.y < b.bottom and a.bottom > b.y


def union(a: Rect, b: Rect) -> Rect:
    return Rect.from_corners(
        min(a.x, b.x), min(a.y, b.y), max(a.right, b.right), max(a.bottom, b.bottom)
    )


def in_margin(rect: Rect, dimensions: ImageDimensions, margin: MarginConfig) -> bool:
    """
    Check whether a rect touches the top, bottom or right margin band.

    The left edge has no margin band.
    """
    if dimensions.width <= 0 or dimensions.height <= 0:
        return False
    return (
        rect.y < dimensions.height * margin.vertical
        or rect.bottom > dimensions.height * (1 - margin.vertical)
        or rect.right > dimensions.width * (1 - margin.right)
    )


def split_vertically(rect: Rect, parts: int) -> list[Rect]:
    """
    Split a rect into ``parts`` equal horizontal bands, top to bottom.

    Each band keeps the original x and width; heights sum to the original.
    """
    if parts < 1:
        raise ValueError(f"parts must be >= 1, got {parts}")
    band = rect.height / parts
    return [Rect(rect.x, rect.y + i * band, rect.width, band) for i in range(parts)]
