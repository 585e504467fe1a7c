"""QR code decoding with several preprocessing strategies.

Flyer photos are skewed, low-contrast and often carry the code in one corner,
so a single detector pass misses many of them.  ``decode`` walks
``STRATEGIES`` in order; each strategy produces one or more image variants
and every variant is tried with normal then inverted polarity.  The first
payload that is an absolute http(s) URL wins.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from collections.abc import Callable, Iterator
from pathlib import Path
from urllib.parse import urlparse

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from eventide.errors import DecodeError

logger = logging.getLogger(__name__)

CONTRAST_FACTOR = 1.5
_DATA_URI_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


def _is_valid_url(text: str) -> bool:
    parsed = urlparse(text)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _read_variant(image: Image.Image) -> str | None:
    """Run the detector on *image*, then on its inverse."""
    detector = cv2.QRCodeDetector()
    for candidate in (image, ImageOps.invert(image)):
        pixels = np.asarray(candidate)
        if pixels.ndim == 3:
            pixels = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
        data, _points, _ = detector.detectAndDecode(pixels)
        payload = (data or "").strip()
        if payload and _is_valid_url(payload):
            return payload
    return None


# ---------------------------------------------------------------------------
# Strategies: each maps an RGB image to a URL or None
# ---------------------------------------------------------------------------


def original(image: Image.Image) -> str | None:
    return _read_variant(image)


def _resized(max_dimension: int) -> Callable[[Image.Image], str | None]:
    def strategy(image: Image.Image) -> str | None:
        width, height = image.size
        scale = max_dimension / max(width, height)
        if scale >= 1:
            return _read_variant(image)
        size = (max(1, round(width * scale)), max(1, round(height * scale)))
        return _read_variant(image.resize(size, Image.Resampling.LANCZOS))

    strategy.__name__ = f"resized_{max_dimension}"
    return strategy


def grayscale(image: Image.Image) -> str | None:
    # Pillow's "L" conversion uses the ITU-R 601-2 luma weights (0.299, 0.587, 0.114)
    return _read_variant(image.convert("L"))


def high_contrast(image: Image.Image) -> str | None:
    intercept = 128 * (1 - CONTRAST_FACTOR)
    table = [min(255, max(0, round(v * CONTRAST_FACTOR + intercept))) for v in range(256)]
    return _read_variant(image.point(table * len(image.getbands())))


def _regions(image: Image.Image) -> Iterator[Image.Image]:
    width, height = image.size
    half_w, half_h = width // 2, height // 2
    boxes = [
        (0, 0, width, height),
        (0, 0, half_w, half_h),
        (half_w, 0, half_w * 2, half_h),
        (0, half_h, half_w, half_h * 2),
        (half_w, half_h, half_w * 2, half_h * 2),
        (width // 4, height // 4, width // 4 + half_w, height // 4 + half_h),
    ]
    for box in boxes:
        if box[2] > box[0] and box[3] > box[1]:
            yield image.crop(box)


def regions(image: Image.Image) -> str | None:
    for crop in _regions(image):
        found = _read_variant(crop)
        if found:
            return found
    return None


STRATEGIES: list[Callable[[Image.Image], str | None]] = [
    original,
    _resized(1000),
    _resized(2000),
    grayscale,
    high_contrast,
    regions,
]


def _load(image_bytes: bytes) -> Image.Image:
    if not image_bytes:
        raise DecodeError("Empty image data")
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise DecodeError(f"Unreadable image: {exc}") from exc
    return ImageOps.exif_transpose(image).convert("RGB")


def decode(image_bytes: bytes) -> str | None:
    """Return the URL encoded in a QR code inside *image_bytes*, or None.

    Never raises: unreadable input and strategy failures are logged.
    """
    try:
        image = _load(image_bytes)
    except DecodeError as exc:
        logger.warning("QR decode skipped: %s", exc)
        return None

    logger.debug("QR decode on %dx%d image", *image.size)
    for index, strategy in enumerate(STRATEGIES, start=1):
        try:
            found = strategy(image)
        except Exception as exc:
            logger.warning("QR strategy %s failed: %s", strategy.__name__, exc)
            continue
        if found:
            logger.info("Found QR code using strategy %d/%d (%s): %s", index, len(STRATEGIES), strategy.__name__, found)
            return found

    logger.info("No QR code found after %d strategies", len(STRATEGIES))
    return None


def strip_data_uri(data: str) -> str:
    """Base64 payload of *data*, minus any ``data:image/...;base64,`` prefix."""
    return _DATA_URI_PREFIX.sub("", data.strip())


def decode_data_uri(data: str) -> str | None:
    """Accept base64 image data with or without a ``data:image/...;base64,`` prefix."""
    payload = strip_data_uri(data)
    if not payload:
        logger.warning("QR decode skipped: empty base64 data")
        return None
    try:
        raw = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        logger.warning("QR decode skipped: invalid base64 (%s)", exc)
        return None
    return decode(raw)


def decode_file(path: str | Path) -> str | None:
    try:
        raw = Path(path).read_bytes()
    except OSError as exc:
        logger.warning("QR decode skipped: cannot read %s (%s)", path, exc)
        return None
    return decode(raw)
