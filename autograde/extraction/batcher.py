"""
Extraction batcher — page images in, one ordered text out.

Pages are split into consecutive batches and each batch goes through a
single vision call. A failed batch is recorded as a ``BatchResult`` with an
``error`` and the run carries on; placeholder strings only appear when the
results are joined by :func:`assemble_text`. After every batch the text
accumulated so far is written to the progress store and reported through
``on_progress``.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from autograde.errors import ExtractionFailedError
from autograde.extraction.vision_client import VisionErr, VisionExtractor, VisionOk
from autograde.ingestion.pdf_converter import PageImage
from autograde.utils.logger import get_logger

log = get_logger(__name__)

BATCH_SEPARATOR = "\n\n"

# on_progress(percent, partial_text, batch_index, total_batches); may be async
ProgressCallback = Callable[[int, str, int, int], Any]


@dataclass(frozen=True)
class ExtractionBatch:
    index: int
    total: int
    pages: Sequence[PageImage]

    @property
    def first_page(self) -> int:
        return self.pages[0].page_number

    @property
    def last_page(self) -> int:
        return self.pages[-1].page_number


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one batch: either ``text`` or ``error`` is meaningful."""

    index: int
    first_page: int
    last_page: int
    text: str = ""
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def has_text(self) -> bool:
        return not self.failed and bool(self.text.strip())

    @property
    def page_label(self) -> str:
        return f"pages {self.first_page}-{self.last_page}"

    def render(self) -> str:
        if self.failed:
            return f"[Error processing {self.page_label}: {self.error}]"
        if not self.has_text:
            return f"[No text extracted from {self.page_label}]"
        return self.text


@dataclass
class ExtractionReport:
    text: str
    results: List[BatchResult] = field(default_factory=list)
    batch_size: int = 0

    @property
    def failed_batches(self) -> List[int]:
        return [r.index for r in self.results if r.failed]

    @property
    def batch_errors(self) -> Dict[int, str]:
        return {r.index: r.error for r in self.results if r.failed}


def make_batches(pages: Sequence[PageImage], batch_size: int) -> List[ExtractionBatch]:
    """Split *pages* into consecutive batches of at most *batch_size*."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    chunks = [pages[i:i + batch_size] for i in range(0, len(pages), batch_size)]
    return [ExtractionBatch(i + 1, len(chunks), chunk) for i, chunk in enumerate(chunks)]


def assemble_text(results: Sequence[BatchResult]) -> str:
    return BATCH_SEPARATOR.join(r.render() for r in sorted(results, key=lambda r: r.index))


class ExtractionBatcher:
    """Runs batches through a vision extractor with partial persistence."""

    def __init__(
        self,
        vision: VisionExtractor,
        progress_store=None,
        max_concurrent_batches: int = 1,
    ):
        """
        Args:
            vision: Anything with ``async extract(images, document_type, first_page)``.
            progress_store: ``ExtractionProgressStore`` or None for no persistence.
            max_concurrent_batches: Batches dispatched together per group.
        """
        if max_concurrent_batches < 1:
            raise ValueError("max_concurrent_batches must be >= 1")
        self.vision = vision
        self.progress_store = progress_store
        self.max_concurrent_batches = max_concurrent_batches

    async def extract(
        self,
        page_images: Sequence[PageImage],
        batch_size: int,
        on_progress: Optional[ProgressCallback] = None,
        document_id: Optional[str] = None,
        document_type: str = "question",
    ) -> str:
        """Extract the full text of *page_images*; see :meth:`extract_batches`."""
        report = await self.extract_batches(
            page_images, batch_size, on_progress, document_id, document_type
        )
        return report.text

    async def extract_batches(
        self,
        page_images: Sequence[PageImage],
        batch_size: int,
        on_progress: Optional[ProgressCallback] = None,
        document_id: Optional[str] = None,
        document_type: str = "question",
    ) -> ExtractionReport:
        """
        Extract text batch by batch and return the per-batch results.

        Raises:
            ExtractionFailedError: No batch produced any text.
        """
        batches = make_batches(page_images, batch_size)
        if not batches:
            raise ExtractionFailedError("No pages to extract")

        total_pages = len(page_images)
        log.info("Extracting %d pages in %d batches of up to %d (concurrency %d)",
                 total_pages, len(batches), batch_size, self.max_concurrent_batches)
        await self._persist(document_id, status="processing")

        results: List[BatchResult] = []
        pages_done = 0
        for start in range(0, len(batches), self.max_concurrent_batches):
            group = batches[start:start + self.max_concurrent_batches]
            group_results = await asyncio.gather(
                *(self._run_batch(batch, document_type) for batch in group)
            )
            # gather keeps input order, so results stay in batch order
            for batch, result in zip(group, group_results):
                results.append(result)
                pages_done += len(batch.pages)
                partial = assemble_text(results)
                await self._persist(document_id, status="processing", partial_text=partial,
                                    has_text=any(r.has_text for r in results))
                percent = round(pages_done / total_pages * 100)
                await self._notify(on_progress, percent, partial, batch.index, batch.total)

        report = ExtractionReport(assemble_text(results), results, batch_size)

        if not any(r.has_text for r in results):
            log.error("Extraction failed: none of %d batches produced text", len(results))
            await self._persist(document_id, status="failed", has_text=False)
            raise ExtractionFailedError(
                "Text extraction failed: no batch produced any text",
                batch_errors=report.batch_errors,
            )

        if report.failed_batches:
            log.warning("Extraction finished with failed batches: %s", report.failed_batches)

        await self._persist(document_id, status="completed", partial_text=report.text,
                            has_text=True)
        await self._notify(on_progress, 100, report.text, len(batches), len(batches))
        log.info("Extraction complete: %d chars from %d pages", len(report.text), total_pages)
        return report

    async def _run_batch(self, batch: ExtractionBatch, document_type: str) -> BatchResult:
        images = [p.data_uri for p in batch.pages]
        log.info("Batch %d/%d: pages %d-%d", batch.index, batch.total,
                 batch.first_page, batch.last_page)
        try:
            outcome = await self.vision.extract(images, document_type, batch.first_page)
        except Exception as exc:
            outcome = VisionErr(str(exc) or exc.__class__.__name__)

        if isinstance(outcome, VisionOk):
            return BatchResult(batch.index, batch.first_page, batch.last_page, text=outcome.text)

        log.warning("Batch %d/%d failed: %s", batch.index, batch.total, outcome.reason)
        return BatchResult(batch.index, batch.first_page, batch.last_page, error=outcome.reason)

    async def _persist(
        self,
        document_id: Optional[str],
        status: Optional[str] = None,
        partial_text: Optional[str] = None,
        has_text: Optional[bool] = None,
    ) -> None:
        if self.progress_store is None or document_id is None:
            return
        ok = await asyncio.to_thread(
            self.progress_store.update, document_id,
            status=status, partial_text=partial_text, has_text=has_text,
        )
        if not ok:
            log.warning("Progress write for %s did not persist", document_id)

    @staticmethod
    async def _notify(callback: Optional[ProgressCallback], *args) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            log.warning("Progress callback raised: %s", exc)
