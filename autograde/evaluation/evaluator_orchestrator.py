"""
Evaluator Orchestrator — grades one answer sheet against a paper and key.

Coordinates:
  1. Question counting (chat call, regex fallback)
  2. Strategy selection (single call, or batches of question numbers)
  3. Per-batch evaluation, failures isolated to their batch
  4. Merge of batch answers in question order
  5. JSON recovery of the model output
  6. Validation and repair into an EvaluationResult
"""

import inspect
from typing import Any, Callable, Dict, List, Optional

from autograde.errors import EvaluationFailedError, InvalidEvaluationShapeError
from autograde.evaluation.chat_client import ChatCompleter
from autograde.evaluation.json_repair import parse_with_repair
from autograde.evaluation.models import EvaluationResult, StudentInfo
from autograde.evaluation.prompts import (
    BATCH_SYSTEM_PROMPT,
    EVALUATION_SYSTEM_PROMPT,
    build_batch_prompt,
    build_evaluation_prompt,
)
from autograde.evaluation.question_counter import count_questions
from autograde.evaluation.validation import validate_evaluation
from autograde.utils.logger import get_logger

log = get_logger(__name__)

# on_status(status, message); may be async
StatusCallback = Callable[[str, str], Any]


def plan_batches(question_count: int, batch_size: int) -> List[List[int]]:
    """
    Consecutive question-number ranges covering ``1..question_count``.

    >>> [len(b) for b in plan_batches(42, 8)]
    [8, 8, 8, 8, 8, 2]
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [
        list(range(start, min(start + batch_size, question_count + 1)))
        for start in range(1, question_count + 1, batch_size)
    ]


class EvaluationOrchestrator:
    """
    Coordinates the chat calls that grade one student.
    """

    def __init__(self, chat: ChatCompleter, single_shot_threshold: int = 5,
                 question_batch_size: int = 8):
        self.chat = chat
        self.single_shot_threshold = single_shot_threshold
        self.question_batch_size = question_batch_size

    async def evaluate(
        self,
        question_paper_text: str,
        answer_key_text: str,
        student_text: str,
        student_info: StudentInfo,
        on_status: Optional[StatusCallback] = None,
    ) -> EvaluationResult:
        """
        Grade *student_text* and return a validated result.

        Raises:
            EvaluationFailedError: The single call, or every batch, failed.
            MalformedEvaluationResponseError: Single-shot output could not be parsed.
            InvalidEvaluationShapeError: Parsed output lacks required fields.
        """
        await self._notify(on_status, "pending", "Evaluation queued")
        log.info("Evaluating answer sheet for %s", student_info.name)

        try:
            # 1. COUNT
            await self._notify(on_status, "processing", "Counting questions")
            count = await count_questions(self.chat, question_paper_text)

            # 2. STRATEGY
            if count <= self.single_shot_threshold:
                log.info("%d questions: single evaluation call", count)
                result = await self._evaluate_single_shot(
                    question_paper_text, answer_key_text, student_text, student_info, on_status
                )
            else:
                batches = plan_batches(count, self.question_batch_size)
                log.info("%d questions: %d batches of up to %d",
                         count, len(batches), self.question_batch_size)
                result = await self._evaluate_batched(
                    batches, question_paper_text, answer_key_text, student_text,
                    student_info, on_status,
                )
        except Exception as exc:
            log.error("Evaluation for %s failed: %s", student_info.name, exc)
            await self._notify(on_status, "failed", str(exc))
            raise

        await self._notify(
            on_status, "completed", f"Evaluated {result.total_questions_detected} questions"
        )
        return result

    async def _evaluate_single_shot(
        self, question_paper, answer_key, student_text, info, on_status
    ) -> EvaluationResult:
        await self._notify(on_status, "processing", "Evaluating all questions")
        user_prompt = build_evaluation_prompt(question_paper, answer_key, student_text, info)
        try:
            raw = await self.chat.complete(EVALUATION_SYSTEM_PROMPT, user_prompt, "json")
        except Exception as exc:
            raise EvaluationFailedError(
                f"Evaluation request failed: {exc}", [str(exc)]
            ) from exc

        parsed = parse_with_repair(raw)
        return validate_evaluation(parsed, info)

    async def _evaluate_batched(
        self, batches, question_paper, answer_key, student_text, info, on_status
    ) -> EvaluationResult:
        # 3. PER-BATCH, sequential
        answers: List[Dict[str, Any]] = []
        errors: List[str] = []
        seen = set()
        for index, numbers in enumerate(batches, start=1):
            label = f"batch {index}/{len(batches)} (questions {numbers[0]}-{numbers[-1]})"
            await self._notify(on_status, "processing", f"Evaluating {label}")
            try:
                batch_answers = await self._evaluate_batch(
                    numbers, question_paper, answer_key, student_text, info
                )
            except Exception as exc:
                log.warning("Evaluation %s failed: %s", label, exc)
                errors.append(f"{label}: {exc}")
                continue

            # 4. MERGE in batch order, first occurrence of a question wins
            for answer in batch_answers:
                qno = answer.get("question_no")
                if isinstance(qno, int) and qno in seen:
                    log.debug("Dropping duplicate answer for Q%d from %s", qno, label)
                    continue
                seen.add(qno)
                answers.append(answer)
            log.info("Evaluation %s: %d answers (%d expected)",
                     label, len(batch_answers), len(numbers))

        if len(errors) == len(batches):
            raise EvaluationFailedError(
                f"All {len(batches)} evaluation batches failed", errors
            )

        envelope = {
            "student_name": info.name,
            "roll_no": info.roll_number,
            "class": info.class_name,
            "subject": info.subject,
            "total_questions_detected": len(answers),
            "answers": answers,
        }
        # 6. VALIDATE; summary fields are synthesized, not model-written
        return validate_evaluation(envelope, info, fill_student_name=True)

    async def _evaluate_batch(
        self, numbers, question_paper, answer_key, student_text, info
    ) -> List[Dict[str, Any]]:
        prompt = build_batch_prompt(question_paper, answer_key, student_text, info, numbers)
        raw = await self.chat.complete(BATCH_SYSTEM_PROMPT, prompt, "json")
        parsed = parse_with_repair(raw, allow_list=True)
        batch_answers = parsed if isinstance(parsed, list) else parsed.get("answers")
        if not isinstance(batch_answers, list):
            raise InvalidEvaluationShapeError("Batch response has no 'answers' list")
        return [a for a in batch_answers if isinstance(a, dict)]

    @staticmethod
    async def _notify(callback: Optional[StatusCallback], status: str, message: str) -> None:
        if callback is None:
            return
        try:
            result = callback(status, message)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            log.warning("Status callback raised: %s", exc)
