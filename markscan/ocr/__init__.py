"""
Work segmentation stages.

Each stage is a transform over RecognizedLine lists:
- RecognitionOrchestrator: primary math recognition with layout fallback
- BoundaryDetector: cuts off the printed question
- LinePostProcessor: splits merged rows, drops noise
- correlate_handwriting: tags handwritten lines
- sort_reading_order: natural reading order
- OutputAssembler: step ids and the bbox lookup table

Example:
    >>> from markscan.ocr import create_pipeline
    >>> result = create_pipeline().process(image_bytes, question_text)
    >>> print(result.text)
"""

from markscan.ocr.assembler import OutputAssembler
from markscan.ocr.boundary import BoundaryDetector, BoundaryResult
from markscan.ocr.handwriting import correlate_handwriting
from markscan.ocr.math_detection import (
    MathCandidate,
    detect_math_candidates,
    score_math_likeness,
)
from markscan.ocr.orchestrator import RecognitionOrchestrator
from markscan.ocr.ordering import sort_reading_order
from markscan.ocr.pipeline import (
    SegmentationPipeline,
    create_pipeline,
    get_service_status,
)
from markscan.ocr.postprocess import (
    FilterRule,
    InclusionFilter,
    LinePostProcessor,
    PostProcessResult,
)

__all__ = [
    # Pipeline
    "SegmentationPipeline",
    "create_pipeline",
    "get_service_status",
    # Recognition
    "RecognitionOrchestrator",
    "MathCandidate",
    "detect_math_candidates",
    "score_math_likeness",
    # Boundary
    "BoundaryDetector",
    "BoundaryResult",
    # Post-processing
    "FilterRule",
    "InclusionFilter",
    "LinePostProcessor",
    "PostProcessResult",
    # Enrichment and output
    "correlate_handwriting",
    "sort_reading_order",
    "OutputAssembler",
]
