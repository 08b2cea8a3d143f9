"""
MarkScan: Extract a student's own work from a photographed exam page.

A math-aware recognizer reads the page line by line; when it fails, a
multi-pass layout recognizer with selective math re-recognition takes
over. Printed question text and scan noise are removed, and what is left
is returned as ordered steps with bounding boxes.

Example:
    >>> import markscan
    >>> pipeline = markscan.create_pipeline()
    >>> result = pipeline.process(image_bytes, question_text="Work out 2 + 2")
    >>> for step in result.steps:
    ...     print(step.id, step.text)
    step_1 2+2=4
"""

from markscan.config import (
    BackendConfig,
    BoundaryConfig,
    FilterConfig,
    HandwritingConfig,
    MarginConfig,
    OrderingConfig,
    PipelineConfig,
    RecognitionConfig,
    load_config,
)
from markscan.exceptions import (
    BackendUnavailableError,
    ConfigurationError,
    GeometryInvalidError,
    MarkScanError,
    NoUsableDataError,
    TotalFailureError,
)
from markscan.models import (
    BoundaryMethod,
    Diagnostics,
    ImageDimensions,
    LookupEntry,
    PipelineResult,
    RecognizedLine,
    Rect,
    SourceBackend,
    StudentWorkStep,
)
from markscan.ocr.pipeline import (
    SegmentationPipeline,
    create_pipeline,
    get_service_status,
)

__version__ = "0.1.0"
__all__ = [
    # Main API
    "SegmentationPipeline",
    "create_pipeline",
    "get_service_status",
    # Configuration
    "PipelineConfig",
    "MarginConfig",
    "BoundaryConfig",
    "FilterConfig",
    "OrderingConfig",
    "HandwritingConfig",
    "RecognitionConfig",
    "BackendConfig",
    "load_config",
    # Models
    "PipelineResult",
    "StudentWorkStep",
    "LookupEntry",
    "Diagnostics",
    "RecognizedLine",
    "Rect",
    "ImageDimensions",
    "SourceBackend",
    "BoundaryMethod",
    # Exceptions
    "MarkScanError",
    "BackendUnavailableError",
    "NoUsableDataError",
    "GeometryInvalidError",
    "TotalFailureError",
    "ConfigurationError",
]
