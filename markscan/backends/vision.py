"""
General-purpose layout recognition backend (Google Cloud Vision).

robust_recognize() runs three passes over the page:
1. Clean scan of the original image
2. Enhanced scan (2x, grayscale + autocontrast)
3. Aggressive scan (2x, sharpen + threshold)

Fragments from all passes are rescaled to source coordinates, clustered
by centre point with DBSCAN, merged per cluster, and finally merged
wherever boxes still intersect. A failing pass is skipped; only when all
passes fail is the call reported as BackendUnavailableError.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
from google.api_core import exceptions as google_exceptions
from google.cloud import vision
from sklearn.cluster import DBSCAN

from markscan.backends.base import FragmentGeometry, VisionBackend, VisionFragment
from markscan.backends.imaging import RESIZE_FACTOR, image_dimensions, preprocess
from markscan.config import BACKEND_TIMEOUT_S
from markscan.exceptions import BackendUnavailableError, GeometryInvalidError
from markscan.geometry import intersects, union
from markscan.models import ImageDimensions, Rect

logger = logging.getLogger(__name__)

# Words whose top edges differ by at most this many pixels share a line
LINE_GROUP_TOLERANCE_Y = 10

# Safety cap for the overlap-merge loop
MAX_MERGE_ITERATIONS = 20

# Language hint that switches document detection to the handwriting model
HANDWRITING_LANGUAGE_HINT = "en-t-i0-handwrit"

PASSES: tuple[tuple[str, str | None], ...] = (
    ("pass_A_clean_scan", None),
    ("pass_B_enhanced_scan", "enhanced"),
    ("pass_C_aggressive_scan", "aggressive"),
)


# =============================================================================
# ANNOTATION PARSING
# =============================================================================


def _vertices_rect(vertices: Any, scale: float = 1.0) -> Rect | None:
    xs = [v.x / scale for v in vertices]
    ys = [v.y / scale for v in vertices]
    if not xs:
        return None
    try:
        return Rect.from_corners(min(xs), min(ys), max(xs), max(ys))
    except GeometryInvalidError:
        return None


def _word_text(word: Any) -> str:
    return "".join(symbol.text for symbol in word.symbols)


def annotation_to_fragments(
    annotation: Any, source: str, scale: float = 1.0
) -> list[VisionFragment]:
    """
    Turn a full-text annotation into line fragments.

    Words of each paragraph are grouped into lines by the y position of
    their top edge, then each line becomes one fragment.
    """
    fragments: list[VisionFragment] = []
    if annotation is None:
        return fragments

    for page in annotation.pages:
        for block in page.blocks:
            for paragraph in block.paragraphs:
                words = []
                for word in paragraph.words:
                    rect = _vertices_rect(word.bounding_box.vertices, scale)
                    if rect is not None:
                        words.append((rect, _word_text(word), word.confidence))

                words.sort(key=lambda w: (w[0].y, w[0].x))
                line: list[tuple[Rect, str, float]] = []
                for entry in words:
                    if line and abs(entry[0].y - line[-1][0].y) > LINE_GROUP_TOLERANCE_Y / scale:
                        fragments.append(_line_fragment(line, source))
                        line = []
                    line.append(entry)
                if line:
                    fragments.append(_line_fragment(line, source))

    return fragments


def _line_fragment(words: list[tuple[Rect, str, float]], source: str) -> VisionFragment:
    words = sorted(words, key=lambda w: w[0].x)
    box = words[0][0]
    for rect, _, _ in words[1:]:
        box = union(box, rect)
    return VisionFragment(
        text=" ".join(text for _, text, _ in words if text),
        geometry=FragmentGeometry(box.x, box.y, box.width, box.height),
        confidence=sum(conf for _, _, conf in words) / len(words),
        source=source,
    )


# =============================================================================
# CLUSTERING
# =============================================================================


def _merge_fragments(members: list[VisionFragment], source: str) -> VisionFragment:
    box = members[0].geometry.to_rect()
    for member in members[1:]:
        box = union(box, member.geometry.to_rect())

    ordered = sorted(members, key=lambda m: (m.geometry.min_y, m.geometry.min_x))
    text = " ".join(m.text.strip() for m in ordered if m.text.strip())
    confidence = sum(m.confidence for m in members) / len(members)

    return VisionFragment(
        text=text,
        geometry=FragmentGeometry(box.x, box.y, box.width, box.height),
        confidence=confidence,
        source=source,
    )


def merge_overlapping(fragments: list[VisionFragment]) -> list[VisionFragment]:
    """Merge intersecting fragments until no intersections remain."""
    current = list(fragments)
    for _ in range(MAX_MERGE_ITERATIONS):
        changed = False
        merged: list[VisionFragment] = []
        used: set[int] = set()
        for i, fragment in enumerate(current):
            if i in used:
                continue
            group = [fragment]
            box = fragment.geometry.to_rect()
            for j in range(i + 1, len(current)):
                if j in used:
                    continue
                other = current[j].geometry.to_rect()
                if intersects(box, other):
                    group.append(current[j])
                    box = union(box, other)
                    used.add(j)
                    changed = True
            merged.append(
                group[0] if len(group) == 1 else _merge_fragments(group, "merged")
            )
        current = merged
        if not changed:
            break
    return current


def cluster_fragments(
    fragments: list[VisionFragment], eps: float, min_pts: int
) -> list[VisionFragment]:
    """
    Cluster fragment centres with DBSCAN and merge each cluster.

    Noise points are kept as individual fragments.
    """
    if not fragments:
        return []

    centers = np.array(
        [
            [f.geometry.min_x + f.geometry.width / 2, f.geometry.min_y + f.geometry.height / 2]
            for f in fragments
        ]
    )
    labels = DBSCAN(eps=eps, min_samples=min_pts).fit(centers).labels_

    clusters: dict[int, list[VisionFragment]] = {}
    noise: list[VisionFragment] = []
    for label, fragment in zip(labels, fragments):
        if label == -1:
            noise.append(fragment)
        else:
            clusters.setdefault(int(label), []).append(fragment)

    result = [_merge_fragments(members, "dbscan_cluster") for members in clusters.values()]
    result.extend(noise)
    return merge_overlapping(result)


# =============================================================================
# BACKEND
# =============================================================================


class GoogleVisionBackend(VisionBackend):
    """
    Google Cloud Vision client with multi-pass recognition.

    The API client is created lazily so constructing the backend never
    touches the network or credentials.

    Example:
        >>> backend = GoogleVisionBackend()
        >>> fragments = backend.robust_recognize(image_bytes, 60.0, 2)
    """

    name = "google_vision"

    def __init__(
        self,
        credentials_path: str | None = None,
        timeout: float = BACKEND_TIMEOUT_S,
        client: Any = None,
    ):
        self.credentials_path = credentials_path
        self.timeout = timeout
        self._client = client

    @property
    def is_available(self) -> bool:
        return self._client is not None or bool(self.credentials_path)

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            if self.credentials_path:
                self._client = vision.ImageAnnotatorClient.from_service_account_file(
                    self.credentials_path
                )
            else:
                self._client = vision.ImageAnnotatorClient()
        except (google_exceptions.GoogleAPIError, OSError, ValueError) as e:
            raise BackendUnavailableError(self.name, f"cannot create client: {e}") from e
        return self._client

    def _call(self, method: str, image: bytes, **kwargs: Any) -> Any:
        client = self._get_client()
        try:
            response = getattr(client, method)(
                image=vision.Image(content=image), timeout=self.timeout, **kwargs
            )
        except google_exceptions.DeadlineExceeded as e:
            raise BackendUnavailableError(self.name, f"timed out after {self.timeout}s") from e
        except google_exceptions.GoogleAPIError as e:
            raise BackendUnavailableError(self.name, f"{method} failed: {e}") from e

        if response.error.message:
            raise BackendUnavailableError(self.name, response.error.message)
        return response

    def recognize_text(
        self, image: bytes, source: str = "single", scale: float = 1.0
    ) -> list[VisionFragment]:
        """Single text-detection call returning line fragments."""
        response = self._call("text_detection", image)
        return annotation_to_fragments(response.full_text_annotation, source, scale)

    def robust_recognize(
        self, image: bytes, cluster_eps: float, cluster_min_pts: int
    ) -> list[VisionFragment]:
        all_fragments: list[VisionFragment] = []
        failures = 0

        for source, mode in PASSES:
            try:
                if mode is None:
                    fragments = self.recognize_text(image, source)
                else:
                    fragments = self.recognize_text(
                        preprocess(image, mode), source, scale=RESIZE_FACTOR
                    )
            except (BackendUnavailableError, ValueError) as e:
                failures += 1
                logger.warning("Vision %s failed: %s", source, e)
                continue
            logger.debug("Vision %s produced %d fragments", source, len(fragments))
            all_fragments.extend(fragments)

        if failures == len(PASSES):
            raise BackendUnavailableError(self.name, "all recognition passes failed")

        clustered = cluster_fragments(all_fragments, cluster_eps, cluster_min_pts)
        logger.info(
            "Robust recognition: %d raw fragments -> %d clustered",
            len(all_fragments),
            len(clustered),
        )
        return clustered

    def detect_handwriting(self, image: bytes) -> list[Rect]:
        response = self._call(
            "document_text_detection",
            image,
            image_context={"language_hints": [HANDWRITING_LANGUAGE_HINT]},
        )
        regions = []
        annotation = response.full_text_annotation
        if annotation is None:
            return regions
        for page in annotation.pages:
            for block in page.blocks:
                rect = _vertices_rect(block.bounding_box.vertices)
                if rect is not None:
                    regions.append(rect)
        return regions

    def get_image_dimensions(self, image: bytes) -> ImageDimensions:
        return image_dimensions(image)
