import pytest
from sqlalchemy.exc import OperationalError

from autograde.errors import DocumentNotFoundError


def test_create_stores_blob_and_pending_row(documents, blobs, pdf_bytes):
    doc = documents.create("Unit test 1", "teacher-1", pdf_bytes, document_type="question")

    assert doc["extraction_status"] == "pending"
    assert doc["has_extracted_text"] is False
    assert doc["path"] == f"teacher-1/{doc['id']}/document.pdf"
    assert doc["file_url"] == f"https://files.example.test/documents/{doc['path']}"
    assert blobs.get("documents", doc["path"]) == pdf_bytes
    assert documents.read_bytes(doc) == pdf_bytes


def test_get_unknown_document_raises(documents):
    with pytest.raises(DocumentNotFoundError):
        documents.get("missing")


def test_list_for_owner_newest_first_and_filtered(documents, pdf_bytes):
    first = documents.create("Paper", "teacher-1", pdf_bytes, "question")
    second = documents.create("Key", "teacher-1", pdf_bytes, "answer")
    documents.create("Other", "teacher-2", pdf_bytes, "question")

    assert [d["id"] for d in documents.list_for_owner("teacher-1")] == [second["id"], first["id"]]
    assert [d["id"] for d in documents.list_for_owner("teacher-1", "answer")] == [second["id"]]


def test_delete_removes_blob_and_row(documents, blobs, pdf_bytes):
    doc = documents.create("Paper", "teacher-1", pdf_bytes)

    assert documents.delete(doc["id"]) is True
    with pytest.raises(FileNotFoundError):
        blobs.get("documents", doc["path"])
    with pytest.raises(DocumentNotFoundError):
        documents.get(doc["id"])
    assert documents.delete(doc["id"]) is False


def test_unknown_document_type_is_rejected(documents, pdf_bytes):
    with pytest.raises(ValueError):
        documents.create("Notes", "teacher-1", pdf_bytes, document_type="essay")


def test_blob_paths_cannot_escape_root(blobs):
    with pytest.raises(ValueError):
        blobs.put("documents", "../../etc/passwd", b"x")


def test_progress_lifecycle(documents, progress, pdf_bytes):
    doc = documents.create("Paper", "teacher-1", pdf_bytes)

    assert progress.mark_started(doc["id"])
    started = documents.get(doc["id"])
    assert started["extraction_status"] == "processing"
    assert started["extraction_started_at"] is not None

    assert progress.update(doc["id"], status="processing", partial_text="=== PAGE 1 ===\nHi")
    partial = documents.get(doc["id"])
    assert partial["extracted_text"] == "=== PAGE 1 ===\nHi"
    assert partial["has_extracted_text"] is True
    assert partial["extraction_started_at"] == started["extraction_started_at"]
    assert partial["last_extracted_at"] is not None

    assert progress.update(doc["id"], status="completed", partial_text="full text",
                           metadata={"total_pages": 1})
    assert progress.update(doc["id"], metadata={"model": "gpt-4o"})
    done = documents.get(doc["id"])
    assert done["extraction_status"] == "completed"
    assert done["extracted_text"] == "full text"
    assert done["metadata"] == {"total_pages": 1, "model": "gpt-4o"}


def test_progress_update_for_unknown_document_returns_false(progress):
    assert progress.update("missing", status="processing") is False


def test_progress_rejects_unknown_status(progress):
    with pytest.raises(ValueError):
        progress.update("any", status="done")


def test_progress_write_failure_is_not_raised(documents, progress, pdf_bytes, monkeypatch):
    doc = documents.create("Paper", "teacher-1", pdf_bytes)

    def broken_session():
        raise OperationalError("UPDATE documents", {}, Exception("database is locked"))

    monkeypatch.setattr(progress.db, "session", broken_session)
    assert progress.update(doc["id"], partial_text="text") is False


def test_progress_has_text_flag_overrides_text_check(documents, progress, pdf_bytes):
    doc = documents.create("Paper", "teacher-1", pdf_bytes)

    assert progress.update(doc["id"], status="processing",
                           partial_text="[Error processing pages 1-1: boom]", has_text=False)
    assert documents.get(doc["id"])["has_extracted_text"] is False

    assert progress.update(doc["id"], status="failed", has_text=False)
    stored = documents.get(doc["id"])
    assert stored["has_extracted_text"] is False
    assert stored["extracted_text"] == "[Error processing pages 1-1: boom]"
