"""
Recognition backends and the contracts they implement.

The Google Vision adapter is imported lazily by create_pipeline() so the
contracts and the Mathpix client can be used without the Google stack.
"""

from markscan.backends.base import (
    CropProvider,
    FragmentGeometry,
    MathBackend,
    MathRequestOptions,
    MathResponse,
    VisionBackend,
    VisionFragment,
)
from markscan.backends.imaging import PillowCropProvider, decode_image_input
from markscan.backends.mathpix import MathpixBackend

__all__ = [
    "CropProvider",
    "FragmentGeometry",
    "MathBackend",
    "MathRequestOptions",
    "MathResponse",
    "MathpixBackend",
    "PillowCropProvider",
    "VisionBackend",
    "VisionFragment",
    "decode_image_input",
]
