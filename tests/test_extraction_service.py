import asyncio
import re

import pytest

from autograde.errors import ExtractionFailedError, InvalidDocumentError
from autograde.extraction.batcher import ExtractionBatcher
from autograde.extraction.service import DocumentExtractionService, choose_batch_size

from conftest import FakeVision, make_pdf


def build_service(documents, progress, vision=None, **kwargs):
    batcher = ExtractionBatcher(vision or FakeVision(), progress)
    return DocumentExtractionService(documents, progress, batcher, model_name="fake-vision", **kwargs)


def run(coro):
    return asyncio.run(coro)


def test_three_page_pdf_with_batch_size_one(documents, progress, pdf_bytes):
    doc = documents.create("Paper", "teacher-1", pdf_bytes)
    vision = FakeVision()
    service = build_service(documents, progress, vision, batch_size=1)

    text = run(service.extract_document(doc["id"]))

    assert [int(n) for n in re.findall(r"=== PAGE (\d+) ===", text)] == [1, 2, 3]
    assert [call[:2] for call in vision.calls] == [(1, 1), (2, 1), (3, 1)]
    stored = documents.get(doc["id"])
    assert stored["extraction_status"] == "completed"
    assert stored["extracted_text"] == text
    meta = stored["metadata"]
    assert meta["total_pages"] == 3
    assert meta["processed_pages"] == 3
    assert meta["batch_size"] == 1
    assert meta["batches_processed"] == 3
    assert meta["failed_batches"] == []
    assert meta["model"] == "fake-vision"


def test_existing_text_is_not_extracted_again(documents, progress, pdf_bytes):
    doc = documents.create("Paper", "teacher-1", pdf_bytes)
    progress.update(doc["id"], status="completed", partial_text="already here")
    vision = FakeVision()

    text = run(build_service(documents, progress, vision).extract_document(doc["id"]))

    assert text == "already here"
    assert vision.calls == []


def test_force_re_extracts(documents, progress, pdf_bytes):
    doc = documents.create("Paper", "teacher-1", pdf_bytes)
    progress.update(doc["id"], status="completed", partial_text="stale")

    text = run(build_service(documents, progress).extract_document(doc["id"], force=True))

    assert "=== PAGE 1 ===" in text


def test_page_cap(documents, progress):
    doc = documents.create("Long paper", "teacher-1", make_pdf(4))
    vision = FakeVision()
    service = build_service(documents, progress, vision, batch_size=10, max_pages=2)

    text = run(service.extract_document(doc["id"]))

    assert "=== PAGE 3 ===" not in text
    meta = documents.get(doc["id"])["metadata"]
    assert meta["total_pages"] == 4
    assert meta["processed_pages"] == 2


def test_choose_batch_size():
    assert choose_batch_size(40) == 10
    assert choose_batch_size(41) == 5
    assert choose_batch_size(3, default_size=1) == 1


def test_oversized_file_is_rejected_and_marked_failed(documents, progress, pdf_bytes):
    doc = documents.create("Paper", "teacher-1", pdf_bytes)
    service = build_service(documents, progress, max_file_bytes=100)

    with pytest.raises(InvalidDocumentError, match="exceeds the maximum"):
        run(service.extract_document(doc["id"]))

    assert documents.get(doc["id"])["extraction_status"] == "failed"


def test_non_pdf_upload_is_marked_failed(documents, progress):
    doc = documents.create("Paper", "teacher-1", b"PK\x03\x04" + b"\x00" * 64)

    with pytest.raises(InvalidDocumentError, match="ZIP file"):
        run(build_service(documents, progress).extract_document(doc["id"]))

    stored = documents.get(doc["id"])
    assert stored["extraction_status"] == "failed"
    assert "ZIP file" in stored["metadata"]["error"]


def test_all_batches_failing_marks_failed(documents, progress, pdf_bytes):
    doc = documents.create("Paper", "teacher-1", pdf_bytes)
    vision = FakeVision(fail_on={1, 2, 3})

    with pytest.raises(ExtractionFailedError):
        run(build_service(documents, progress, vision, batch_size=1).extract_document(doc["id"]))

    assert documents.get(doc["id"])["extraction_status"] == "failed"
