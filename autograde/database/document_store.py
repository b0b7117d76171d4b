"""
Document store — upload, lookup, listing and deletion of source PDFs.

Rows live in the ``documents`` table; the bytes live in the blob store.
Deleting a document removes both.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from autograde.database.db_manager import DatabaseManager
from autograde.database.models import DOCUMENT_TYPES, Document, new_id
from autograde.errors import DocumentNotFoundError
from autograde.storage.blob_store import LocalBlobStore
from autograde.utils.logger import get_logger
from autograde.utils.retry_utils import retry_with_backoff

log = get_logger(__name__)

DEFAULT_BUCKET = "documents"


class DocumentStore:
    """CRUD for :class:`~autograde.database.models.Document` rows and their blobs."""

    def __init__(self, db: DatabaseManager, blobs: LocalBlobStore, bucket: str = DEFAULT_BUCKET):
        self.db = db
        self.blobs = blobs
        self.bucket = bucket

    def create(
        self,
        title: str,
        owner_id: str,
        data: bytes,
        document_type: str = "question",
        filename: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Upload *data* and create a ``pending`` document row.

        Returns:
            The new document as a dict.
        """
        if document_type not in DOCUMENT_TYPES:
            raise ValueError(f"Unknown document type: {document_type}")

        doc_id = new_id()
        path = f"{owner_id}/{doc_id}/{filename or 'document.pdf'}"
        file_url = self.blobs.put(self.bucket, path, data)

        with self.db.session() as s:
            doc = Document(
                id=doc_id,
                title=title,
                owner_id=owner_id,
                document_type=document_type,
                bucket=self.bucket,
                path=path,
                file_url=file_url,
                extraction_status="pending",
                has_extracted_text=False,
            )
            s.add(doc)
            s.commit()
            log.info("Created %s document %s (%s)", document_type, doc_id, title)
            return _to_dict(doc)

    @retry_with_backoff(max_retries=3, base_delay=0.5, exceptions=(OperationalError,))
    def get(self, document_id: str) -> Dict[str, Any]:
        """
        Return one document.

        Raises:
            DocumentNotFoundError: If no row has *document_id*.
        """
        with self.db.session() as s:
            doc = s.get(Document, document_id)
            if doc is None:
                raise DocumentNotFoundError(document_id)
            return _to_dict(doc)

    @retry_with_backoff(max_retries=3, base_delay=0.5, exceptions=(OperationalError,))
    def list_for_owner(self, owner_id: str, document_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Documents owned by *owner_id*, newest first."""
        with self.db.session() as s:
            query = select(Document).filter_by(owner_id=owner_id)
            if document_type:
                query = query.filter_by(document_type=document_type)
            rows = s.execute(query.order_by(Document.created_at.desc())).scalars().all()
            return [_to_dict(d) for d in rows]

    def read_bytes(self, document: Dict[str, Any]) -> bytes:
        return self.blobs.get(document["bucket"], document["path"])

    def delete(self, document_id: str) -> bool:
        """
        Delete a document row and its blob.

        Returns:
            False if the document did not exist.
        """
        with self.db.session() as s:
            doc = s.get(Document, document_id)
            if doc is None:
                log.warning("Delete requested for unknown document %s", document_id)
                return False
            self.blobs.delete(doc.bucket, doc.path)
            s.delete(doc)
            s.commit()
        log.info("Deleted document %s", document_id)
        return True


def _to_dict(doc: Document) -> Dict[str, Any]:
    return {
        "id": doc.id,
        "title": doc.title,
        "owner_id": doc.owner_id,
        "document_type": doc.document_type,
        "bucket": doc.bucket,
        "path": doc.path,
        "file_url": doc.file_url,
        "extraction_status": doc.extraction_status,
        "extracted_text": doc.extracted_text,
        "has_extracted_text": doc.has_extracted_text,
        "metadata": dict(doc.doc_metadata or {}),
        "created_at": doc.created_at.isoformat() if doc.created_at else None,
        "extraction_started_at": (
            doc.extraction_started_at.isoformat() if doc.extraction_started_at else None
        ),
        "last_extracted_at": (
            doc.last_extracted_at.isoformat() if doc.last_extracted_at else None
        ),
    }
