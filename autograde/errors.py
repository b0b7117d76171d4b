"""
Exception hierarchy for the extraction and evaluation pipeline.

Page- and batch-level failures are recovered locally; the errors below are
raised only when a whole run produces no usable output, or when the input
itself is unusable.
"""

from typing import Dict, List, Optional


class AutogradeError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = True


class InvalidDocumentError(AutogradeError):
    """The uploaded bytes are not a usable PDF."""

    retryable = False

    def __init__(self, message: str, detected_type: Optional[str] = None):
        super().__init__(message)
        self.detected_type = detected_type


class PasswordProtectedError(InvalidDocumentError):
    """The PDF is encrypted and cannot be rendered without a password."""

    def __init__(self, message: str = "PDF is password-protected"):
        super().__init__(message, detected_type="encrypted PDF")


class PageRenderError(AutogradeError):
    """A single page could not be rasterized; aborts the rasterize call."""

    def __init__(self, page_number: int, reason: str):
        super().__init__(f"Failed to render page {page_number}: {reason}")
        self.page_number = page_number
        self.reason = reason


class DocumentNotFoundError(AutogradeError):
    retryable = False

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class ExtractionFailedError(AutogradeError):
    """No batch produced usable text."""

    def __init__(self, message: str, batch_errors: Optional[Dict[int, str]] = None):
        super().__init__(message)
        self.batch_errors = batch_errors or {}


class MalformedEvaluationResponseError(AutogradeError):
    """Every step of the JSON repair ladder failed."""

    EXCERPT_LENGTH = 500

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_excerpt = (raw_response or "")[: self.EXCERPT_LENGTH]
        super().__init__(f"{message} (response excerpt: {self.raw_excerpt!r})")


class InvalidEvaluationShapeError(AutogradeError):
    """The response parsed but lacks required fields."""


class EvaluationFailedError(AutogradeError):
    """Every evaluation batch failed."""

    def __init__(self, message: str, batch_errors: Optional[List[str]] = None):
        super().__init__(message)
        self.batch_errors = batch_errors or []
