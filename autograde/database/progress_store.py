"""
Extraction progress store — best-effort persistence of extraction state.

Writes the status, the text accumulated so far and timestamps onto the
``documents`` row after every batch. A failed write is logged and
reported as ``False``; it never aborts extraction, because the next
batch (or the final write) overwrites the same fields again.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from autograde.database.db_manager import DatabaseManager
from autograde.database.models import EXTRACTION_STATUSES, Document, utcnow
from autograde.utils.logger import get_logger

log = get_logger(__name__)


class ExtractionProgressStore:
    """Status/partial-text writer for one document table."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def update(
        self,
        document_id: str,
        status: Optional[str] = None,
        partial_text: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        has_text: Optional[bool] = None,
    ) -> bool:
        """
        Persist extraction progress for *document_id*.

        Args:
            document_id: Target document.
            status: New ``extraction_status``; ``processing`` also stamps
                ``extraction_started_at`` the first time.
            partial_text: Text accumulated so far; stamps
                ``last_extracted_at``.
            metadata: Keys merged into the document metadata.
            has_text: Whether any real text was extracted. Placeholder
                text for failed pages does not count. Defaults to
                whether *partial_text* is non-blank.

        Returns:
            True if the write succeeded.
        """
        if status is not None and status not in EXTRACTION_STATUSES:
            raise ValueError(f"Unknown extraction status: {status}")

        try:
            with self.db.session() as s:
                doc = s.get(Document, document_id)
                if doc is None:
                    log.warning("Progress update for unknown document %s", document_id)
                    return False

                now = utcnow()
                if status is not None:
                    if status == "processing" and doc.extraction_status != "processing":
                        doc.extraction_started_at = now
                    doc.extraction_status = status
                if partial_text is not None:
                    doc.extracted_text = partial_text
                    doc.last_extracted_at = now
                    if has_text is None:
                        has_text = bool(partial_text.strip())
                if has_text is not None:
                    doc.has_extracted_text = has_text
                if metadata:
                    doc.doc_metadata = {**(doc.doc_metadata or {}), **metadata}
                s.commit()
            return True
        except SQLAlchemyError as exc:
            log.error("Failed to persist extraction progress for %s: %s", document_id, exc)
            return False

    def mark_started(self, document_id: str) -> bool:
        return self.update(document_id, status="processing")

    def mark_failed(self, document_id: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        return self.update(document_id, status="failed", metadata=metadata)
