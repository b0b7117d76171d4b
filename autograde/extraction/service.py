"""
Document extraction service: one call from a stored PDF to stored text.

Loads the document row, fetches its bytes, checks size, rasterizes in a
worker thread (capped at ``MAX_PAGES``), picks a batch size, runs the
:class:`~autograde.extraction.batcher.ExtractionBatcher` and writes the
run metadata back onto the document.
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from autograde.errors import InvalidDocumentError
from autograde.extraction.batcher import ExtractionBatcher, ProgressCallback
from autograde.ingestion.pdf_converter import PageImage, RasterOptions, count_pages, rasterize
from autograde.storage.blob_store import fetch_url_bytes
from autograde.utils.logger import get_logger

log = get_logger(__name__)


def choose_batch_size(page_count: int, default_size: int = 10,
                      large_size: int = 5, large_threshold: int = 40) -> int:
    """Smaller batches for long documents."""
    return large_size if page_count > large_threshold else default_size


def render_pages(data: bytes, options: RasterOptions, max_pages: int) -> Tuple[List[PageImage], int]:
    """
    Render at most *max_pages* pages.

    Returns:
        ``(pages, total_pages_in_document)``
    """
    total = count_pages(data)
    pages_iter = rasterize(data, options)
    try:
        pages = list(itertools.islice(pages_iter, max_pages))
    finally:
        pages_iter.close()
    if total > max_pages:
        log.warning("PDF has %d pages, only the first %d will be processed", total, max_pages)
    return pages, total


class DocumentExtractionService:
    """Extracts the text of stored documents."""

    def __init__(
        self,
        documents,
        progress,
        batcher: ExtractionBatcher,
        raster_options: RasterOptions = RasterOptions(),
        batch_size: int = 10,
        large_document_batch_size: int = 5,
        large_document_pages: int = 40,
        max_pages: int = 50,
        max_file_bytes: int = 25 * 1024 * 1024,
        warn_file_bytes: int = 5 * 1024 * 1024,
        model_name: str = "",
    ):
        self.documents = documents
        self.progress = progress
        self.batcher = batcher
        self.raster_options = raster_options
        self.batch_size = batch_size
        self.large_document_batch_size = large_document_batch_size
        self.large_document_pages = large_document_pages
        self.max_pages = max_pages
        self.max_file_bytes = max_file_bytes
        self.warn_file_bytes = warn_file_bytes
        self.model_name = model_name

    @classmethod
    def from_config(cls, config, documents, progress, batcher) -> "DocumentExtractionService":
        return cls(
            documents,
            progress,
            batcher,
            raster_options=RasterOptions(
                quality=config.RASTER_QUALITY,
                grayscale=config.RASTER_GRAYSCALE,
                max_width=config.RASTER_MAX_WIDTH,
                image_format=config.RASTER_FORMAT,
            ),
            batch_size=config.EXTRACTION_BATCH_SIZE,
            large_document_batch_size=config.LARGE_DOCUMENT_BATCH_SIZE,
            large_document_pages=config.LARGE_DOCUMENT_PAGES,
            max_pages=config.MAX_PAGES,
            max_file_bytes=config.MAX_FILE_BYTES,
            warn_file_bytes=config.WARN_FILE_BYTES,
            model_name=config.OPENAI_VISION_MODEL,
        )

    async def extract_document(
        self,
        document_id: str,
        on_progress: Optional[ProgressCallback] = None,
        force: bool = False,
    ) -> str:
        """
        Extract and persist the text of one document.

        Args:
            document_id: Document to process.
            on_progress: Forwarded to the batcher.
            force: Re-extract even if text is already stored.

        Returns:
            The full extracted text.

        Raises:
            DocumentNotFoundError: Unknown *document_id*.
            InvalidDocumentError: Not a PDF, encrypted or too large.
            PageRenderError: A page could not be rendered.
            ExtractionFailedError: No batch produced text.
        """
        document = await asyncio.to_thread(self.documents.get, document_id)

        done = document["extraction_status"] == "completed" and document["has_extracted_text"]
        if done and not force:
            log.info("Document %s already has extracted text, skipping", document_id)
            return document["extracted_text"] or ""

        await asyncio.to_thread(self.progress.mark_started, document_id)
        try:
            data = await asyncio.to_thread(self._load_bytes, document)
            self._check_size(data)

            pages, total_pages = await asyncio.to_thread(
                render_pages, data, self.raster_options, self.max_pages
            )
            batch_size = choose_batch_size(
                len(pages), self.batch_size,
                self.large_document_batch_size, self.large_document_pages,
            )

            report = await self.batcher.extract_batches(
                pages,
                batch_size,
                on_progress=on_progress,
                document_id=document_id,
                document_type=document["document_type"],
            )
        except Exception as exc:
            log.error("Extraction of %s failed: %s", document_id, exc)
            await asyncio.to_thread(
                self.progress.mark_failed, document_id, {"error": str(exc)}
            )
            raise

        metadata: Dict[str, Any] = {
            "total_pages": total_pages,
            "processed_pages": len(pages),
            "batch_size": batch_size,
            "batches_processed": len(report.results),
            "failed_batches": report.failed_batches,
            "processing_date": datetime.now(timezone.utc).isoformat(),
            "model": self.model_name,
        }
        await asyncio.to_thread(self.progress.update, document_id, metadata=metadata)
        return report.text

    def _load_bytes(self, document: Dict[str, Any]) -> bytes:
        if document.get("bucket") and document.get("path"):
            try:
                return self.documents.read_bytes(document)
            except FileNotFoundError:
                if not document.get("file_url"):
                    raise
                log.warning("Blob missing for %s, falling back to %s",
                            document["id"], document["file_url"])
        return fetch_url_bytes(document["file_url"])

    def _check_size(self, data: bytes) -> None:
        size_mb = len(data) / (1024 * 1024)
        if len(data) > self.max_file_bytes:
            limit_mb = self.max_file_bytes / (1024 * 1024)
            raise InvalidDocumentError(
                f"File size ({size_mb:.2f}MB) exceeds the maximum allowed ({limit_mb:.0f}MB)"
            )
        if len(data) > self.warn_file_bytes:
            log.warning("Large PDF detected (%.2fMB), processing may take longer", size_mb)
