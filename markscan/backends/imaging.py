"""
Image helpers built on Pillow.

Provides input decoding (raw bytes, base64, data URLs), dimension
lookup, the crop provider used by the fallback strategy and the
preprocessing variants used by multi-pass layout recognition.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import math
from typing import Literal

from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from markscan.backends.base import CropProvider
from markscan.exceptions import GeometryInvalidError
from markscan.models import ImageDimensions, Rect

logger = logging.getLogger(__name__)

# Upscale factor for the enhanced/aggressive recognition passes
RESIZE_FACTOR = 2

# Binarization cut-off for the aggressive pass
THRESHOLD_LEVEL = 128

Preprocessing = Literal["enhanced", "aggressive"]


def decode_image_input(data: bytes | str) -> bytes:
    """
    Normalize image input to raw bytes.

    Args:
        data: Raw bytes, a base64 string or a ``data:image/...;base64,`` URL.

    Returns:
        Raw image bytes.

    Raises:
        ValueError: If a string input is not valid base64.
    """
    if isinstance(data, bytes):
        return data

    payload = data.strip()
    if payload.startswith("data:"):
        _, _, payload = payload.partition(",")
        if not payload:
            raise ValueError("Invalid data URL: missing payload")

    try:
        return base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Image input is not valid base64: {e}") from e


def open_image(image: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(image))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Cannot decode image: {e}") from e
    return img


def image_dimensions(image: bytes) -> ImageDimensions:
    """Read the pixel size from the image header."""
    try:
        with Image.open(io.BytesIO(image)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Cannot decode image: {e}") from e
    return ImageDimensions(width=width, height=height)


def encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def preprocess(image: bytes, mode: Preprocessing) -> bytes:
    """
    Produce an upscaled variant of the image for an extra recognition pass.

    ``enhanced`` applies grayscale and autocontrast; ``aggressive``
    sharpens and binarizes. Coordinates recognized on the result must be
    divided by RESIZE_FACTOR.
    """
    img = open_image(image)
    img = img.resize((img.width * RESIZE_FACTOR, img.height * RESIZE_FACTOR))

    if mode == "enhanced":
        img = ImageOps.autocontrast(ImageOps.grayscale(img))
    elif mode == "aggressive":
        img = ImageOps.grayscale(img.filter(ImageFilter.SHARPEN))
        img = img.point(lambda p: 255 if p > THRESHOLD_LEVEL else 0)
    else:
        raise ValueError(f"Unknown preprocessing mode: {mode!r}")

    return encode_png(img)


class PillowCropProvider(CropProvider):
    """
    Crop regions out of an encoded image.

    Example:
        >>> provider = PillowCropProvider()
        >>> png = provider.crop(image_bytes, Rect(10, 20, 200, 40), padding=4)
    """

    def crop(self, image: bytes, rect: Rect, padding: int = 0) -> bytes:
        img = open_image(image)

        left = max(0, math.floor(rect.x) - padding)
        top = max(0, math.floor(rect.y) - padding)
        right = min(img.width, math.ceil(rect.right) + padding)
        bottom = min(img.height, math.ceil(rect.bottom) + padding)

        if right <= left or bottom <= top:
            raise GeometryInvalidError(
                f"Empty crop: left={left}, top={top}, right={right}, bottom={bottom}"
            )

        logger.debug("Cropping region (%d, %d, %d, %d)", left, top, right, bottom)
        return encode_png(img.crop((left, top, right, bottom)))
