import asyncio

import pytest

from autograde.errors import EvaluationFailedError, ExtractionFailedError
from autograde.evaluation.evaluator_orchestrator import EvaluationOrchestrator
from autograde.evaluation.models import StudentInfo
from autograde.extraction.batcher import ExtractionBatcher
from autograde.extraction.service import DocumentExtractionService
from autograde.processing.grading_runner import GradingRunner, format_marks

from conftest import FakeChat, FakeVision

INFO = StudentInfo(name="Asha Rao", roll_number="42")


def seed(documents, progress, pdf_bytes, extracted=True):
    ids = {}
    for kind, doc_type in (("paper", "question"), ("key", "answer"), ("sheet", "student-sheet")):
        doc = documents.create(kind, "teacher-1", pdf_bytes, document_type=doc_type)
        if extracted:
            progress.update(doc["id"], status="completed", partial_text=f"{kind} text Q1 Q2 Q3")
        ids[kind] = doc["id"]
    return ids


def run_student(runner, ids):
    return asyncio.run(runner.evaluate_student(
        "s1", "t1", ids["sheet"], ids["paper"], ids["key"], INFO
    ))


def test_completed_record_with_score(documents, progress, grading, pdf_bytes):
    ids = seed(documents, progress, pdf_bytes)
    runner = GradingRunner(documents, grading, EvaluationOrchestrator(FakeChat(count_reply="10")))

    record = run_student(runner, ids)

    assert record["status"] == "completed"
    assert record["score"] == 20
    assert record["feedback"] == "Scored 20 out of 20"
    assert record["answer_sheet_id"] == ids["sheet"]
    assert record["evaluation_result"]["total_questions_detected"] == 10
    assert len(grading.fetch_by_test("t1")) == 1


def test_failure_is_recorded_then_raised(documents, progress, grading, pdf_bytes):
    ids = seed(documents, progress, pdf_bytes)
    chat = FakeChat(count_reply="10", failing_batches={1, 2})
    runner = GradingRunner(documents, grading, EvaluationOrchestrator(chat))

    with pytest.raises(EvaluationFailedError):
        run_student(runner, ids)

    record = grading.fetch("s1", "t1")
    assert record["status"] == "failed"
    assert "All 2 evaluation batches failed" in record["feedback"]


def test_missing_text_without_extraction_service_fails(documents, progress, grading, pdf_bytes):
    ids = seed(documents, progress, pdf_bytes, extracted=False)
    runner = GradingRunner(documents, grading, EvaluationOrchestrator(FakeChat()))

    with pytest.raises(ExtractionFailedError):
        run_student(runner, ids)
    assert grading.fetch("s1", "t1")["status"] == "failed"


def test_missing_text_is_extracted_first(documents, progress, grading, pdf_bytes):
    ids = seed(documents, progress, pdf_bytes, extracted=False)
    vision = FakeVision()
    extraction = DocumentExtractionService(
        documents, progress, ExtractionBatcher(vision, progress), batch_size=3
    )
    runner = GradingRunner(documents, grading, EvaluationOrchestrator(FakeChat(count_reply="8")),
                           extraction)

    record = run_student(runner, ids)

    assert record["status"] == "completed"
    assert [call[2] for call in vision.calls] == ["question", "answer", "student-sheet"]


def test_format_marks():
    assert format_marks(20.0) == "20"
    assert format_marks(7.5) == "7.5"


def test_failed_regrade_drops_previous_score(documents, progress, grading, pdf_bytes):
    ids = seed(documents, progress, pdf_bytes)
    run_student(GradingRunner(documents, grading, EvaluationOrchestrator(FakeChat(count_reply="10"))),
                ids)

    failing = FakeChat(count_reply="10", failing_batches={1, 2})
    with pytest.raises(EvaluationFailedError):
        run_student(GradingRunner(documents, grading, EvaluationOrchestrator(failing)), ids)

    record = grading.fetch("s1", "t1")
    assert record["status"] == "failed"
    assert record["score"] is None
    assert record["evaluation_result"] is None
    assert "All 2 evaluation batches failed" in record["feedback"]
