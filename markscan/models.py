"""
Data models for MarkScan.

These models flow through the segmentation pipeline:
RecognizedLine is created from backend output, split or dropped by the
post-processor, annotated by the handwriting correlator, reordered by the
sorter and finally projected into StudentWorkStep by the assembler.
Nothing here survives across separate processing invocations.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from markscan.exceptions import GeometryInvalidError


class SourceBackend(Enum):
    """Recognition backend a line came from."""

    MATH = "math"
    VISION = "vision"


class BoundaryMethod(Enum):
    """How the question/answer boundary was found."""

    FUZZY = "fuzzy"
    KEYWORD = "keyword"
    NONE = "none"


# =============================================================================
# GEOMETRY
# =============================================================================


@dataclass(frozen=True)
class Rect:
    """
    Axis-aligned rectangle in pixel space, origin top-left.

    All fields must be finite and width/height strictly positive;
    construction fails with GeometryInvalidError otherwise.
    """

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        values = (self.x, self.y, self.width, self.height)
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
            raise GeometryInvalidError(f"Non-finite rectangle: {values}")
        if self.width <= 0 or self.height <= 0:
            raise GeometryInvalidError(
                f"Rectangle must have positive size, got {self.width}x{self.height}"
            )

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def to_bbox(self) -> list[float]:
        """Return ``[x, y, width, height]``."""
        return [self.x, self.y, self.width, self.height]

    @classmethod
    def from_bbox(cls, bbox: list[float] | tuple[float, ...]) -> Rect:
        """Build a Rect from ``[x, y, width, height]``."""
        if len(bbox) != 4:
            raise GeometryInvalidError(f"Expected 4 values, got {len(bbox)}")
        return cls(*(float(v) for v in bbox))

    @classmethod
    def from_corners(cls, x0: float, y0: float, x1: float, y1: float) -> Rect:
        """Build a Rect from top-left and bottom-right corners."""
        return cls(x0, y0, x1 - x0, y1 - y0)


@dataclass(frozen=True)
class ImageDimensions:
    """Pixel size of the source image."""

    width: int
    height: int


# =============================================================================
# PIPELINE RECORDS
# =============================================================================


@dataclass(frozen=True)
class RecognizedLine:
    """
    A line of recognized text with its location on the page.

    Instances are immutable. Re-recognition of a region attaches its
    confidence as an overlay (``recognized_confidence``) instead of
    replacing the original value.

    Attributes:
        text: Recognized text (plain or LaTeX).
        region: Bounding box on the source image.
        confidence: Confidence reported when the line was first recognized.
        source: Backend that produced the text.
        is_handwritten: Handwriting tag; None until correlated.
        math_gated: True when the line already passed the math-likeness
            gate of the fallback strategy.
        recognized_confidence: Confidence overlay from a re-recognition.
    """

    text: str
    region: Rect
    confidence: float
    source: SourceBackend
    is_handwritten: bool | None = None
    math_gated: bool = False
    recognized_confidence: float | None = None

    @property
    def effective_confidence(self) -> float:
        """Overlay confidence when present, otherwise the original one."""
        if self.recognized_confidence is not None:
            return self.recognized_confidence
        return self.confidence

    def with_confidence(self, confidence: float) -> RecognizedLine:
        return replace(self, recognized_confidence=confidence)

    def with_handwriting(self, is_handwritten: bool) -> RecognizedLine:
        return replace(self, is_handwritten=is_handwritten)

    def with_geometry(self, text: str, region: Rect) -> RecognizedLine:
        """Copy of this line with new text and region (used when splitting)."""
        return replace(self, text=text, region=region)


@dataclass(frozen=True)
class StrategyContext:
    """
    Strategy-dependent settings passed down the pipeline stages.

    Attributes:
        used_fallback: True when lines came from the fallback strategy.
        row_overlap: Same-row overlap threshold for the reading-order sort.
    """

    used_fallback: bool
    row_overlap: float


@dataclass
class StrategyOutcome:
    """
    Result of the recognition orchestrator.

    ``used_fallback``, ``recognizer_call_count`` and ``raw_blocks`` are
    diagnostic only and never drive correctness-critical decisions.
    """

    lines: list[RecognizedLine]
    dimensions: ImageDimensions
    used_fallback: bool = False
    recognizer_call_count: int = 0
    vision_call_count: int = 0
    raw_blocks: list[Any] = field(default_factory=list)


# =============================================================================
# OUTPUT
# =============================================================================


@dataclass
class StudentWorkStep:
    """One step of student work in reading order."""

    id: str
    text: str
    bbox: list[float]
    confidence: float
    is_handwritten: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "bbox": list(self.bbox),
            "confidence": self.confidence,
            "is_handwritten": self.is_handwritten,
        }


@dataclass(frozen=True)
class LookupEntry:
    """Lookup table value used to re-locate a step on the page."""

    bbox: tuple[float, float, float, float]
    text: str


@dataclass
class Diagnostics:
    """
    Processing diagnostics for logging and billing.

    Never consumed by correctness-critical logic.
    """

    strategy: str = "primary"
    used_fallback: bool = False
    math_calls: int = 0
    vision_calls: int = 0
    boundary_index: int = 0
    boundary_method: BoundaryMethod = BoundaryMethod.NONE
    lines_recognized: int = 0
    lines_filtered: int = 0
    handwriting_signal: bool = False
    processing_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "used_fallback": self.used_fallback,
            "math_calls": self.math_calls,
            "vision_calls": self.vision_calls,
            "boundary_index": self.boundary_index,
            "boundary_method": self.boundary_method.value,
            "lines_recognized": self.lines_recognized,
            "lines_filtered": self.lines_filtered,
            "handwriting_signal": self.handwriting_signal,
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class PipelineResult:
    """
    The ordered student work extracted from one page.

    Example:
        >>> result = pipeline.process(image_bytes, question_text)
        >>> for step in result.steps:
        ...     print(step.id, step.text)
        >>> result.lookup["step_1"].bbox
        (412.0, 880.0, 210.0, 42.0)
    """

    steps: list[StudentWorkStep]
    lookup: dict[str, LookupEntry]
    dimensions: ImageDimensions
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def text(self) -> str:
        """Step texts joined by newlines."""
        return "\n".join(step.text for step in self.steps)

    @property
    def confidence(self) -> float:
        """Mean step confidence, 0.0 when there are no steps."""
        if not self.steps:
            return 0.0
        return sum(step.confidence for step in self.steps) / len(self.steps)

    def get_step(self, step_id: str) -> StudentWorkStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for JSON serialization.

        Returns:
            Dictionary representation of the result
        """
        return {
            "steps": [step.to_dict() for step in self.steps],
            "lookup": {
                step_id: {"bbox": list(entry.bbox), "text": entry.text}
                for step_id, entry in self.lookup.items()
            },
            "dimensions": {
                "width": self.dimensions.width,
                "height": self.dimensions.height,
            },
            "diagnostics": self.diagnostics.to_dict(),
        }
