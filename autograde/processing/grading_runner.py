"""
Grading runner — evaluates one student and records the outcome.

Loads the extracted text of the question paper, answer key and answer
sheet (extracting any that are missing), runs the evaluation and mirrors
its lifecycle into the grading status store: ``processing`` before the
run, then ``completed`` with score and result, or ``failed`` with the
error message.
"""

import asyncio
from typing import Any, Dict, Optional

from autograde.errors import ExtractionFailedError
from autograde.evaluation.evaluator_orchestrator import EvaluationOrchestrator, StatusCallback
from autograde.evaluation.grade_calculator import compute_final_score
from autograde.evaluation.models import StudentInfo
from autograde.utils.logger import get_logger

log = get_logger(__name__)


def format_marks(value: float) -> str:
    return f"{value:g}"


class GradingRunner:
    """Per-student evaluation with persisted status."""

    def __init__(self, documents, grading, orchestrator: EvaluationOrchestrator,
                 extraction=None):
        """
        Args:
            documents: ``DocumentStore`` holding the three source documents.
            grading: ``GradingStatusStore`` to mirror status into.
            orchestrator: Runs the evaluation itself.
            extraction: Optional ``DocumentExtractionService`` used when a
                document has no extracted text yet.
        """
        self.documents = documents
        self.grading = grading
        self.orchestrator = orchestrator
        self.extraction = extraction

    async def evaluate_student(
        self,
        student_id: str,
        test_id: str,
        answer_sheet_id: str,
        question_paper_id: str,
        answer_key_id: str,
        student_info: StudentInfo,
        on_status: Optional[StatusCallback] = None,
    ) -> Dict[str, Any]:
        """
        Evaluate one student's answer sheet for one test.

        Returns:
            The stored grading record.

        Raises:
            Whatever stopped the evaluation, after recording ``failed``.
        """
        await asyncio.to_thread(
            self.grading.upsert, student_id, test_id, "processing",
            answer_sheet_id=answer_sheet_id,
            clear=("score", "feedback", "evaluation_result"),
        )

        try:
            question_paper = await self._load_text(question_paper_id)
            answer_key = await self._load_text(answer_key_id)
            answer_sheet = await self._load_text(answer_sheet_id)
            result = await self.orchestrator.evaluate(
                question_paper, answer_key, answer_sheet, student_info, on_status
            )
        except Exception as exc:
            log.error("Grading %s on %s failed: %s", student_id, test_id, exc)
            await asyncio.to_thread(
                self.grading.upsert, student_id, test_id, "failed",
                answer_sheet_id=answer_sheet_id, feedback=str(exc),
            )
            raise

        summary = compute_final_score(result.answers)
        feedback = (
            f"Scored {format_marks(summary['obtained'])} "
            f"out of {format_marks(summary['total'])}"
        )
        record = await asyncio.to_thread(
            self.grading.upsert, student_id, test_id, "completed",
            answer_sheet_id=answer_sheet_id,
            score=summary["obtained"],
            feedback=feedback,
            evaluation_result=result.to_dict(),
        )
        log.info("Graded %s on %s: %s (%.2f%%)",
                 student_id, test_id, feedback, summary["percentage"])
        return record

    async def _load_text(self, document_id: str) -> str:
        document = await asyncio.to_thread(self.documents.get, document_id)
        if document["extraction_status"] == "completed" and document["has_extracted_text"]:
            return document["extracted_text"]
        if self.extraction is None:
            raise ExtractionFailedError(f"Document {document_id} has no extracted text")
        log.info("Document %s has no extracted text yet, extracting", document_id)
        return await self.extraction.extract_document(document_id)
