"""
Recognition strategy orchestration.

Two strategies produce the full-page line list:

1. Primary: one math-recognizer call on the whole page with per-line
   data. Accepted as soon as at least one usable line comes back.
2. Fallback: multi-pass layout recognition, margin filtering,
   math-likeness gating, then selective re-recognition of cropped
   regions on the math recognizer, one call at a time.

The fallback runs when the primary call fails, times out, reports an
error or yields nothing usable. When both strategies come up empty the
page fails with TotalFailureError.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from markscan.backends.base import (
    CropProvider,
    MathBackend,
    MathRequestOptions,
    VisionBackend,
    VisionFragment,
)
from markscan.backends.imaging import image_dimensions
from markscan.config import MarginConfig, RecognitionConfig, Strategy
from markscan.exceptions import (
    BackendUnavailableError,
    GeometryInvalidError,
    NoUsableDataError,
    TotalFailureError,
)
from markscan.geometry import in_margin, normalize_rect
from markscan.models import (
    ImageDimensions,
    RecognizedLine,
    SourceBackend,
    StrategyOutcome,
)
from markscan.ocr.math_detection import (
    MathCandidate,
    crop_signature,
    detect_math_candidates,
    mean_confidence,
)

logger = logging.getLogger(__name__)

# Text keys on math-recognizer line objects, in order of preference
LINE_TEXT_KEYS = ("latex_styled", "latex", "text")

# Confidence assumed for math lines that report none
DEFAULT_LINE_CONFIDENCE = 1.0

PRIMARY_OPTIONS = MathRequestOptions(
    include_line_data=True,
    formats=("text", "latex_styled"),
    disable_array_detection=True,
)


def _clamp_confidence(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return min(1.0, max(0.0, float(value)))


def line_from_math(raw: dict[str, Any]) -> RecognizedLine | None:
    """
    Build a RecognizedLine from one math-recognizer line object.

    Returns None when the line has no text or no usable geometry.
    """
    text = ""
    for key in LINE_TEXT_KEYS:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            text = value
            break
    if not text:
        return None

    region = normalize_rect(raw)
    if region is None:
        logger.debug("Dropping math line without geometry: %r", text[:60])
        return None

    return RecognizedLine(
        text=text,
        region=region,
        confidence=_clamp_confidence(raw.get("confidence"), DEFAULT_LINE_CONFIDENCE),
        source=SourceBackend.MATH,
    )


@dataclass
class _CallCounts:
    math: int = 0
    vision: int = 0


@dataclass
class RecognitionOrchestrator:
    """
    Selects and sequences the primary and fallback recognition strategies.

    Attributes:
        math_backend: Math-aware recognizer (primary and region calls).
        vision_backend: Layout recognizer (fallback) and image metadata.
        crop_provider: Crops regions for fallback re-recognition.
        config: Recognition tuning.
        margin: Margin bands for fallback fragment filtering.
        sleep: Delay function between rate-limited calls.

    Example:
        >>> orchestrator = RecognitionOrchestrator(math, vision, PillowCropProvider())
        >>> outcome = orchestrator.recognize(image_bytes)
        >>> outcome.used_fallback, len(outcome.lines)
        (False, 7)
    """

    math_backend: MathBackend | None
    vision_backend: VisionBackend | None
    crop_provider: CropProvider | None = None
    config: RecognitionConfig = field(default_factory=RecognitionConfig)
    margin: MarginConfig = field(default_factory=MarginConfig)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @property
    def math_available(self) -> bool:
        return self.math_backend is not None and self.math_backend.is_available

    @property
    def vision_available(self) -> bool:
        return self.vision_backend is not None and self.vision_backend.is_available

    def get_dimensions(self, image: bytes) -> ImageDimensions:
        """Image size from the layout backend, falling back to a local decode."""
        if self.vision_backend is not None:
            try:
                return self.vision_backend.get_image_dimensions(image)
            except (BackendUnavailableError, ValueError) as e:
                logger.warning("Vision backend could not read image size: %s", e)
        try:
            return image_dimensions(image)
        except ValueError as e:
            logger.warning("Image size unknown, margin filtering disabled: %s", e)
            return ImageDimensions(width=0, height=0)

    # -------------------------------------------------------------------------
    # Primary strategy
    # -------------------------------------------------------------------------

    def run_primary(
        self, image: bytes, counts: _CallCounts
    ) -> tuple[list[RecognizedLine], list[Any]]:
        """
        Recognize the whole page with per-line data.

        Raises:
            BackendUnavailableError: Transport failure or error envelope.
            NoUsableDataError: No line had both text and geometry.
        """
        counts.math += 1
        response = self.math_backend.recognize(image, PRIMARY_OPTIONS)

        if response.error:
            raise BackendUnavailableError(self.math_backend.name, response.error)

        lines = []
        for raw in response.lines:
            line = line_from_math(raw)
            if line is not None:
                lines.append(line)

        if not lines:
            raise NoUsableDataError(
                f"{self.math_backend.name} returned {len(response.lines)} lines, none usable"
            )
        return lines, list(response.lines)

    # -------------------------------------------------------------------------
    # Fallback strategy
    # -------------------------------------------------------------------------

    def _filter_margins(
        self, fragments: list[VisionFragment], dimensions: ImageDimensions
    ) -> list[VisionFragment]:
        kept = []
        for fragment in fragments:
            try:
                rect = fragment.geometry.to_rect()
            except GeometryInvalidError:
                continue
            if in_margin(rect, dimensions, self.margin):
                logger.debug("Ignoring margin noise: %r", fragment.text[:60])
                continue
            kept.append(fragment)
        return kept

    def _fast_path(self, candidate: MathCandidate) -> RecognizedLine:
        return RecognizedLine(
            text=candidate.text,
            region=candidate.region,
            confidence=candidate.confidence,
            source=SourceBackend.VISION,
            math_gated=True,
        )

    def _rerecognize(
        self, image: bytes, candidate: MathCandidate, counts: _CallCounts
    ) -> RecognizedLine:
        """Re-recognize one region; degrade to fast-path text on any failure."""
        try:
            crop = self.crop_provider.crop(image, candidate.region, self.config.crop_padding)
        except (GeometryInvalidError, ValueError) as e:
            logger.warning("Could not crop region %r: %s", candidate.text[:40], e)
            return self._fast_path(candidate)

        counts.math += 1
        try:
            response = self.math_backend.recognize(crop)
        except BackendUnavailableError as e:
            logger.warning("Region re-recognition failed, keeping fast-path text: %s", e)
            return self._fast_path(candidate)

        text = response.best_text
        if response.error or not text.strip():
            logger.warning(
                "Region re-recognition returned no text (%s), keeping fast-path text",
                response.error or "empty",
            )
            return self._fast_path(candidate)

        line = RecognizedLine(
            text=text,
            region=candidate.region,
            confidence=candidate.confidence,
            source=SourceBackend.MATH,
            math_gated=True,
        )
        if response.confidence is not None:
            overlay = _clamp_confidence(response.confidence, candidate.confidence)
            line = line.with_confidence(overlay)
        return line

    def run_fallback(
        self, image: bytes, dimensions: ImageDimensions, counts: _CallCounts
    ) -> tuple[list[RecognizedLine], list[Any]]:
        """
        Layout recognition followed by selective math re-recognition.

        Raises:
            BackendUnavailableError: The layout recognizer failed.
            NoUsableDataError: Nothing survived filtering and gating.
        """
        counts.vision += 1
        fragments = self.vision_backend.robust_recognize(
            image, self.config.cluster_eps, self.config.cluster_min_points
        )
        kept = self._filter_margins(fragments, dimensions)
        page_confidence = mean_confidence(kept)
        candidates = detect_math_candidates(
            kept, self.config.math_likeness_threshold, page_confidence
        )
        logger.info(
            "Fallback: %d fragments, %d outside margins, %d math candidates",
            len(fragments),
            len(kept),
            len(candidates),
        )

        can_rerecognize = self.math_available and self.crop_provider is not None
        queue = sorted(candidates, key=lambda c: (c.suspicious, c.score), reverse=True)

        seen: set[tuple[int, int, int, int]] = set()
        lines: list[RecognizedLine] = []
        calls_made = 0
        for candidate in queue:
            signature = crop_signature(candidate.region)
            if signature in seen:
                continue
            seen.add(signature)

            if candidate.confidence >= self.config.fast_path_confidence or not can_rerecognize:
                lines.append(self._fast_path(candidate))
                continue

            if calls_made:
                self.sleep(self.config.inter_call_delay)
            calls_made += 1
            lines.append(self._rerecognize(image, candidate, counts))

        if not lines:
            raise NoUsableDataError("Fallback strategy produced no math candidates")
        return lines, list(fragments)

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def recognize(
        self,
        image: bytes,
        strategy: Strategy = "auto",
        dimensions: ImageDimensions | None = None,
    ) -> StrategyOutcome:
        """
        Produce the full-page line list.

        Args:
            image: Raw image bytes.
            strategy: "auto" (primary, then fallback), "primary" or "fallback".
            dimensions: Image size if already known.

        Returns:
            StrategyOutcome with lines and call counts.

        Raises:
            TotalFailureError: No strategy produced any line.
        """
        dimensions = dimensions or self.get_dimensions(image)
        counts = _CallCounts()
        failures: list[str] = []

        if strategy in ("auto", "primary"):
            if self.math_available:
                try:
                    lines, raw = self.run_primary(image, counts)
                except (BackendUnavailableError, NoUsableDataError) as e:
                    logger.warning("Primary strategy failed: %s", e)
                    failures.append(f"primary: {e}")
                else:
                    logger.info("Primary strategy produced %d lines", len(lines))
                    return StrategyOutcome(
                        lines=lines,
                        dimensions=dimensions,
                        used_fallback=False,
                        recognizer_call_count=counts.math,
                        raw_blocks=raw,
                    )
            else:
                failures.append("primary: math backend not available")

        if strategy in ("auto", "fallback"):
            if self.vision_available:
                logger.warning("Falling back to layout recognition")
                try:
                    lines, raw = self.run_fallback(image, dimensions, counts)
                except (BackendUnavailableError, NoUsableDataError) as e:
                    logger.warning("Fallback strategy failed: %s", e)
                    failures.append(f"fallback: {e}")
                else:
                    logger.info(
                        "Fallback strategy produced %d lines (%d math calls)",
                        len(lines),
                        counts.math,
                    )
                    return StrategyOutcome(
                        lines=lines,
                        dimensions=dimensions,
                        used_fallback=True,
                        recognizer_call_count=counts.math,
                        vision_call_count=counts.vision,
                        raw_blocks=raw,
                    )
            else:
                failures.append("fallback: vision backend not available")

        logger.error("All recognition strategies exhausted: %s", "; ".join(failures))
        raise TotalFailureError(
            "Both recognition strategies were exhausted without usable lines ("
            + "; ".join(failures)
            + ")"
        )
