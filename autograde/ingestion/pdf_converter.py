"""
PDF bytes to per-page raster images.

Validates the document header before rendering (naming the likely real
file type when it is not a PDF), refuses password-protected PDFs, and
renders each page at OCR resolution with grayscale and contrast
enhancement. Pages are produced lazily; a page that cannot be rendered
aborts the whole call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import fitz  # PyMuPDF
import numpy as np

from autograde.errors import InvalidDocumentError, PageRenderError, PasswordProtectedError
from autograde.utils.image_utils import encode_image, enhance_for_ocr, numpy_to_pil, to_data_uri
from autograde.utils.logger import get_logger

log = get_logger(__name__)

PDF_MAGIC = b"%PDF-"
EOF_MARKER = b"%%EOF"
HEADER_WINDOW = 1024
TRAILER_WINDOW = 1024

BASE_SCALE = 2.5  # 180 DPI
MIN_SCALE = 1.8   # never render below ~130 DPI, even to honour max_width

SUPPORTED_FORMATS = ("png", "jpeg", "jpg", "webp")


@dataclass(frozen=True)
class RasterOptions:
    """Rendering options for :func:`rasterize`."""

    quality: float = 0.95
    grayscale: bool = True
    max_width: int = 2000
    image_format: str = "png"

    def __post_init__(self):
        if not 0 < self.quality <= 1:
            raise ValueError(f"quality must be in (0, 1], got {self.quality}")
        if self.max_width is not None and self.max_width <= 0:
            raise ValueError(f"max_width must be positive, got {self.max_width}")
        if self.image_format.lower() not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported image format: {self.image_format}")


@dataclass(frozen=True)
class PageImage:
    """One rendered page, encoded as a data URI."""

    page_number: int
    data_uri: str
    width: int
    height: int
    grayscale: bool
    image_format: str


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def sniff_file_type(data: bytes) -> str:
    """
    Best-guess description of what *data* actually is.

    Used to turn "not a PDF" into an actionable message.
    """
    head = data[:64]
    if head.startswith(PDF_MAGIC):
        return "PDF document"
    if head.startswith((b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")):
        return "ZIP file"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "PNG image"
    if head.startswith(b"\xff\xd8\xff"):
        return "JPEG image"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "GIF image"
    if head.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "WEBP image"
    if head.startswith((b"II*\x00", b"MM\x00*")):
        return "TIFF image"
    if head.startswith(b"\xd0\xcf\x11\xe0"):
        return "legacy Microsoft Office document"

    text = data[:512].lstrip(b"\xef\xbb\xbf \t\r\n").lower()
    if text.startswith((b"<!doctype html", b"<html")) or b"<html" in text[:256]:
        return "HTML document"
    if text.startswith(b"<?xml"):
        return "XML document"
    if text.startswith((b"{", b"[")):
        return "JSON document"
    try:
        data[:512].decode("utf-8")
        return "plain text"
    except UnicodeDecodeError:
        return "unknown binary file"


def validate_pdf_bytes(data: bytes) -> None:
    """
    Structural checks before handing *data* to the renderer.

    Raises:
        InvalidDocumentError: Empty input or missing ``%PDF`` header.
    """
    if not data:
        raise InvalidDocumentError("Document is empty (0 bytes)", detected_type="empty file")

    offset = data[:HEADER_WINDOW].find(PDF_MAGIC)
    if offset < 0:
        detected = sniff_file_type(data)
        log.error("Rejected document: missing %%PDF header, looks like a %s", detected)
        raise InvalidDocumentError(
            f"File is not a valid PDF: it appears to be a {detected}",
            detected_type=detected,
        )
    if offset > 0:
        log.warning("PDF header found at byte %d instead of 0", offset)

    if EOF_MARKER not in data[-TRAILER_WINDOW:]:
        log.warning(
            "PDF has no %s marker — file may be truncated, attempting to render anyway",
            EOF_MARKER.decode(),
        )


def _open_document(data: bytes) -> "fitz.Document":
    validate_pdf_bytes(data)
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        log.error("Renderer could not open PDF: %s", exc)
        raise InvalidDocumentError(f"PDF cannot be opened (corrupt): {exc}") from exc

    if doc.needs_pass:
        doc.close()
        log.error("Rejected document: PDF is password-protected")
        raise PasswordProtectedError()
    return doc


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_scale(page_width_pt: float, max_width: int) -> float:
    """
    Zoom factor for a page *page_width_pt* points wide.

    Renders at ``BASE_SCALE`` unless that exceeds *max_width*, in which
    case the page is shrunk to fit, but never below ``MIN_SCALE``.
    """
    scale = BASE_SCALE
    if max_width and page_width_pt * BASE_SCALE > max_width:
        scale = max_width / page_width_pt
    return max(scale, MIN_SCALE)


def _render_page(doc: "fitz.Document", index: int, options: RasterOptions) -> PageImage:
    page_number = index + 1
    try:
        page = doc.load_page(index)
        scale = render_scale(page.rect.width, options.max_width)
        pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        rgb = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, pix.n)
        if pix.n != 3:
            rgb = rgb[:, :, :3]
        enhanced = enhance_for_ocr(rgb, grayscale=options.grayscale)
        encoded = encode_image(numpy_to_pil(enhanced), options.image_format, options.quality)
    except Exception as exc:
        log.error("Failed to render page %d: %s", page_number, exc)
        raise PageRenderError(page_number, str(exc)) from exc

    log.debug(
        "PDF page %d/%d: %dx%d at scale %.2f",
        page_number, doc.page_count, pix.width, pix.height, scale,
    )
    return PageImage(
        page_number=page_number,
        data_uri=to_data_uri(encoded, options.image_format),
        width=pix.width,
        height=pix.height,
        grayscale=options.grayscale,
        image_format=options.image_format.lower(),
    )


def _iter_pages(doc: "fitz.Document", options: RasterOptions) -> Iterator[PageImage]:
    try:
        total = doc.page_count
        log.info("PDF loaded with %d pages, beginning conversion to images", total)
        for index in range(total):
            yield _render_page(doc, index, options)
        log.info("Converted %d PDF pages to images", total)
    finally:
        doc.close()


def rasterize(document_bytes: bytes, options: RasterOptions = RasterOptions()) -> Iterator[PageImage]:
    """
    Render every page of a PDF to an OCR-ready image.

    The document is validated and opened eagerly; pages are rendered
    lazily as the returned iterator is consumed. Each call re-renders
    from scratch.

    Args:
        document_bytes: Raw PDF bytes.
        options: Rendering options.

    Returns:
        Iterator of :class:`PageImage` in page order.

    Raises:
        InvalidDocumentError: Bad header or unreadable document.
        PasswordProtectedError: Encrypted PDF.
        PageRenderError: During iteration, if a page fails to render.
    """
    doc = _open_document(document_bytes)
    return _iter_pages(doc, options)


def count_pages(document_bytes: bytes) -> int:
    """Number of pages in a PDF."""
    doc = _open_document(document_bytes)
    try:
        return doc.page_count
    finally:
        doc.close()
