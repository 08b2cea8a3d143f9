"""
Contracts for recognition backends.

The pipeline only talks to these abstract classes, so any substitute
(a different vendor, an on-premise model, a test fake) can be plugged in
as long as it honours the same shapes:

- MathBackend.recognize(image, options) -> MathResponse
- VisionBackend.robust_recognize(image, eps, min_pts) -> [VisionFragment]
- VisionBackend.detect_handwriting(image) -> [Rect]
- VisionBackend.get_image_dimensions(image) -> ImageDimensions
- CropProvider.crop(image, rect, padding) -> bytes

Every network-bound call must carry a bounded timeout and report
transport failures as BackendUnavailableError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from markscan.models import ImageDimensions, Rect


@dataclass
class MathRequestOptions:
    """Options for a math recognizer call."""

    include_line_data: bool = False
    formats: tuple[str, ...] = ("text", "latex_styled")
    disable_array_detection: bool = False


@dataclass
class MathResponse:
    """
    Envelope returned by a math recognizer.

    ``lines`` holds the raw per-line objects untouched; their region shape
    varies and is resolved by markscan.geometry.normalize_rect().
    """

    lines: list[dict[str, Any]] = field(default_factory=list)
    text: str = ""
    latex_styled: str = ""
    confidence: float | None = None
    error: str | None = None

    @property
    def best_text(self) -> str:
        return self.latex_styled or self.text


@dataclass
class FragmentGeometry:
    """Fragment box as reported by the layout recognizer."""

    min_x: float
    min_y: float
    width: float
    height: float

    def to_rect(self) -> Rect:
        return Rect(self.min_x, self.min_y, self.width, self.height)


@dataclass
class VisionFragment:
    """A text fragment from the layout recognizer."""

    text: str
    geometry: FragmentGeometry
    confidence: float = 0.0
    source: str = ""


class MathBackend(ABC):
    """Abstract base for math-aware recognizers."""

    name: str = "math"

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """True when the backend is configured and can be called."""
        pass

    @abstractmethod
    def recognize(
        self, image: bytes, options: MathRequestOptions | None = None
    ) -> MathResponse:
        """Recognize an image (full page or cropped region).

        Raises:
            BackendUnavailableError: On transport errors, timeouts or
                malformed envelopes.
        """
        pass


class VisionBackend(ABC):
    """Abstract base for general-purpose layout recognizers."""

    name: str = "vision"

    @property
    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    def robust_recognize(
        self, image: bytes, cluster_eps: float, cluster_min_pts: int
    ) -> list[VisionFragment]:
        """Multi-pass recognition with clustering of nearby fragments."""
        pass

    @abstractmethod
    def detect_handwriting(self, image: bytes) -> list[Rect]:
        """Return regions that contain handwriting."""
        pass

    @abstractmethod
    def get_image_dimensions(self, image: bytes) -> ImageDimensions:
        pass


class CropProvider(ABC):
    """Abstract base for image cropping."""

    @abstractmethod
    def crop(self, image: bytes, rect: Rect, padding: int = 0) -> bytes:
        """Crop ``rect`` (plus padding, clamped to the image) and encode it.

        Raises:
            GeometryInvalidError: If the crop would be empty.
        """
        pass
