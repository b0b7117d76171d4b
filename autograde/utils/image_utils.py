"""
Common image helper functions used across the project.

Handles PIL ↔ NumPy conversions, OCR enhancement (grayscale and
contrast stretch), and base64 / data-URI encoding of rendered pages.
"""

import base64
import io

import cv2
import numpy as np
from PIL import Image

from autograde.utils.logger import get_logger

log = get_logger(__name__)


_MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "webp": "image/webp",
}


def to_grayscale(rgb: np.ndarray) -> np.ndarray:
    """Luminance-weighted grayscale (0.299 R + 0.587 G + 0.114 B)."""
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)


def stretch_contrast(arr: np.ndarray) -> np.ndarray:
    """
    Min-max contrast stretch to the full 0–255 range.

    For multi-channel arrays the range is measured on the first channel
    and applied to every channel, which is exact for grayscale renders.
    A flat image is returned unchanged. No sharpening is applied.
    """
    reference = arr if arr.ndim == 2 else arr[:, :, 0]
    lo = int(reference.min())
    hi = int(reference.max())
    if hi <= lo:
        return arr
    stretched = (arr.astype(np.float32) - lo) * (255.0 / (hi - lo))
    return np.clip(stretched, 0, 255).astype(np.uint8)


def enhance_for_ocr(rgb: np.ndarray, grayscale: bool = True) -> np.ndarray:
    """
    Prepare an RGB page render for OCR.

    Args:
        rgb: ``H×W×3`` uint8 array.
        grayscale: Desaturate before stretching contrast.

    Returns:
        ``H×W`` array when *grayscale* is set, otherwise ``H×W×3``.
    """
    arr = to_grayscale(rgb) if grayscale else rgb
    return stretch_contrast(arr)


def numpy_to_pil(arr: np.ndarray) -> Image.Image:
    """Convert a NumPy array (RGB or grayscale) to a PIL Image."""
    if arr.ndim == 2:
        return Image.fromarray(arr)
    return Image.fromarray(arr).convert("RGB")


def encode_image(image: Image.Image, fmt: str = "png", quality: float = 0.95) -> bytes:
    """
    Encode *image* to bytes.

    Args:
        image: Source image.
        fmt: ``png``, ``jpeg`` or ``webp``.
        quality: Fraction in (0, 1]; used by lossy formats only.

    Returns:
        Encoded image bytes.
    """
    fmt = fmt.lower()
    pil_fmt = "JPEG" if fmt in ("jpg", "jpeg") else fmt.upper()
    buf = io.BytesIO()
    if pil_fmt in ("JPEG", "WEBP"):
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        image.save(buf, format=pil_fmt, quality=max(1, min(100, round(quality * 100))))
    else:
        image.save(buf, format=pil_fmt)
    return buf.getvalue()


def mime_type_for(fmt: str) -> str:
    """MIME type for an image format name; defaults to PNG."""
    return _MIME_TYPES.get(fmt.lower(), "image/png")


def to_data_uri(data: bytes, fmt: str = "png") -> str:
    """Build a ``data:image/...;base64,`` URI from encoded image bytes."""
    b64 = base64.b64encode(data).decode("utf-8")
    return f"data:{mime_type_for(fmt)};base64,{b64}"

