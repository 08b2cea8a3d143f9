"""
End-to-end work segmentation pipeline.

Stages, each a pure transform over RecognizedLine lists:
1. Recognition (primary strategy, automatic fallback)
2. Boundary cut between printed question and student work
3. Splitting of merged rows and inclusion filtering
4. Handwriting correlation (detector call started in parallel with step 1)
5. Reading-order sort
6. Assembly into steps and the bbox lookup table

Only TotalFailureError leaves process(); every other backend or geometry
problem degrades the affected stage and is logged.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from markscan.backends.base import CropProvider, MathBackend, VisionBackend
from markscan.backends.imaging import PillowCropProvider, decode_image_input
from markscan.backends.mathpix import MathpixBackend
from markscan.config import VALID_STRATEGIES, PipelineConfig, Strategy
from markscan.models import (
    Diagnostics,
    PipelineResult,
    RecognizedLine,
    Rect,
    StrategyContext,
)
from markscan.ocr.assembler import OutputAssembler
from markscan.ocr.boundary import BoundaryDetector
from markscan.ocr.handwriting import correlate_handwriting
from markscan.ocr.orchestrator import RecognitionOrchestrator
from markscan.ocr.ordering import sort_reading_order
from markscan.ocr.postprocess import LinePostProcessor

logger = logging.getLogger(__name__)


# =============================================================================
# SEGMENTATION PIPELINE
# =============================================================================


@dataclass
class SegmentationPipeline:
    """
    Turns a photographed page into the ordered steps of the student's answer.

    Attributes:
        math_backend: Math-aware recognizer.
        vision_backend: Layout recognizer and handwriting detector.
        crop_provider: Crops regions for fallback re-recognition.
        config: Pipeline configuration.

    Example:
        >>> pipeline = create_pipeline()
        >>> result = pipeline.process(image_bytes, question_text="Work out 2 + 2")
        >>> [(s.id, s.text) for s in result.steps]
        [('step_1', '2+2=4')]
    """

    math_backend: MathBackend | None
    vision_backend: VisionBackend | None
    crop_provider: CropProvider | None = field(default_factory=PillowCropProvider)
    config: PipelineConfig = field(default_factory=PipelineConfig)
    orchestrator: RecognitionOrchestrator | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Initialize pipeline components."""
        if self.orchestrator is None:
            self.orchestrator = RecognitionOrchestrator(
                math_backend=self.math_backend,
                vision_backend=self.vision_backend,
                crop_provider=self.crop_provider,
                config=self.config.recognition,
                margin=self.config.margin,
            )
        self.boundary_detector = BoundaryDetector(self.config.boundary)
        self.post_processor = LinePostProcessor(self.config.filter, self.config.margin)
        self.assembler = OutputAssembler()

    @property
    def handwriting_enabled(self) -> bool:
        return (
            self.config.handwriting.enabled
            and self.vision_backend is not None
            and self.vision_backend.is_available
        )

    def _detect_handwriting(self, image: bytes) -> list[Rect]:
        return self.vision_backend.detect_handwriting(image)

    def _await_handwriting(self, future: Future | None) -> list[Rect] | None:
        """Handwriting regions, or None when the signal is unavailable."""
        if future is None:
            return None
        try:
            return future.result(timeout=self.config.recognition.timeout)
        except Exception as e:
            logger.warning("Handwriting detection failed, continuing without it: %s", e)
            return None

    def _context(self, used_fallback: bool) -> StrategyContext:
        ordering = self.config.ordering
        return StrategyContext(
            used_fallback=used_fallback,
            row_overlap=ordering.fallback_overlap if used_fallback else ordering.primary_overlap,
        )

    def process(
        self,
        image: bytes | str,
        question_text: str | None = None,
        strategy: Strategy | None = None,
    ) -> PipelineResult:
        """
        Extract the student's work from one page.

        Args:
            image: Raw image bytes, a base64 string or a data URL.
            question_text: Known question transcript, if any.
            strategy: "auto", "primary" or "fallback"; defaults to the config.

        Returns:
            PipelineResult with ordered steps, the lookup table and diagnostics.

        Raises:
            TotalFailureError: Neither recognition strategy produced a line.
            ValueError: Invalid image input or strategy name.
        """
        start_time = time.time()
        strategy = strategy or self.config.strategy
        if strategy not in VALID_STRATEGIES:
            raise ValueError(f"strategy must be one of {VALID_STRATEGIES}, got {strategy!r}")

        image_bytes = decode_image_input(image)
        dimensions = self.orchestrator.get_dimensions(image_bytes)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="markscan-handwriting")
        try:
            handwriting_future = None
            if self.handwriting_enabled:
                handwriting_future = executor.submit(self._detect_handwriting, image_bytes)

            # Stage 1: Recognition
            outcome = self.orchestrator.recognize(image_bytes, strategy, dimensions)
            context = self._context(outcome.used_fallback)

            # Stage 2: Boundary cut
            lines = outcome.lines
            if context.used_fallback:
                lines = sort_reading_order(lines, context.row_overlap)
            boundary = self.boundary_detector.detect(lines, question_text)
            student_lines = lines[boundary.index :]

            # Stage 3: Split and filter
            processed = self.post_processor.process(student_lines, outcome.dimensions)

            # Stage 4: Handwriting
            regions = self._await_handwriting(handwriting_future)
        finally:
            # A detector still running past its timeout is abandoned, not joined.
            executor.shutdown(wait=False, cancel_futures=True)

        final_lines: list[RecognizedLine] = processed.lines
        if regions is not None:
            final_lines = correlate_handwriting(
                final_lines, regions, self.config.handwriting.coverage_threshold
            )

        # Stage 5: Reading order
        final_lines = sort_reading_order(final_lines, context.row_overlap)

        # Stage 6: Assembly
        steps, lookup = self.assembler.assemble(final_lines)

        diagnostics = Diagnostics(
            strategy="fallback" if context.used_fallback else "primary",
            used_fallback=context.used_fallback,
            math_calls=outcome.recognizer_call_count,
            vision_calls=outcome.vision_call_count,
            boundary_index=boundary.index,
            boundary_method=boundary.method,
            lines_recognized=len(outcome.lines),
            lines_filtered=len(processed.dropped),
            handwriting_signal=regions is not None,
            processing_time_ms=(time.time() - start_time) * 1000,
        )
        logger.info(
            "Extracted %d steps (%s strategy, boundary %d, %.0f ms)",
            len(steps),
            diagnostics.strategy,
            boundary.index,
            diagnostics.processing_time_ms,
        )

        return PipelineResult(
            steps=steps,
            lookup=lookup,
            dimensions=outcome.dimensions,
            diagnostics=diagnostics,
        )

    def get_service_status(self) -> dict[str, Any]:
        """Report which backends can be called."""
        return {
            "math": {
                "name": self.math_backend.name if self.math_backend else None,
                "available": self.orchestrator.math_available,
            },
            "vision": {
                "name": self.vision_backend.name if self.vision_backend else None,
                "available": self.orchestrator.vision_available,
            },
            "handwriting": self.handwriting_enabled,
            "strategy": self.config.strategy,
        }


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def create_pipeline(config: PipelineConfig | None = None) -> SegmentationPipeline:
    """
    Create a pipeline backed by Mathpix and Google Cloud Vision.

    Credentials come from the config's backend section, which defaults
    to the environment.

    Args:
        config: Optional pipeline configuration.

    Returns:
        Configured SegmentationPipeline instance.
    """
    from markscan.backends.vision import GoogleVisionBackend

    config = config or PipelineConfig()
    backends = config.backends
    timeout = config.recognition.timeout

    math_backend = MathpixBackend(
        app_id=backends.mathpix_app_id,
        app_key=backends.mathpix_app_key,
        base_url=backends.mathpix_base_url,
        timeout=timeout,
    )
    vision_backend = GoogleVisionBackend(
        credentials_path=backends.google_credentials,
        timeout=timeout,
    )

    return SegmentationPipeline(
        math_backend=math_backend,
        vision_backend=vision_backend,
        crop_provider=PillowCropProvider(),
        config=config,
    )


def get_service_status(config: PipelineConfig | None = None) -> dict[str, Any]:
    """Backend availability for a pipeline built from ``config``."""
    return create_pipeline(config).get_service_status()
