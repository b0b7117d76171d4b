import asyncio
import json

import pytest

from autograde.errors import (
    EvaluationFailedError,
    InvalidEvaluationShapeError,
    MalformedEvaluationResponseError,
)
from autograde.evaluation.evaluator_orchestrator import EvaluationOrchestrator, plan_batches
from autograde.evaluation.models import StudentInfo
from autograde.evaluation.question_counter import estimate_question_count, parse_count

from conftest import FakeChat, answer

INFO = StudentInfo(name="Asha Rao", roll_number="42", class_name="10-B", subject="Maths")
PAPER = "Section A\nQ1. 2 + 2 = ?\nQ2. 3 + 3 = ?\nQ3. 4 + 4 = ?"


def evaluate(chat, on_status=None, **kwargs):
    orchestrator = EvaluationOrchestrator(chat, **kwargs)
    return asyncio.run(orchestrator.evaluate(PAPER, "1) 4 2) 6 3) 8", "4, 6, 9", INFO, on_status))


def single_shot_reply(answers, **extra):
    data = {
        "student_name": "Asha Rao",
        "total_questions_detected": len(answers),
        "questions_by_section": {"Section A": len(answers)},
        "overall_performance": {
            "strengths": ["Quick arithmetic"],
            "areas_for_improvement": ["Check final answers"],
            "study_recommendations": ["Revise times tables"],
            "personalized_summary": "Asha did well.",
        },
        "answers": answers,
    }
    data.update(extra)
    return json.dumps(data)


def test_plan_batches_for_42_questions():
    assert [len(b) for b in plan_batches(42, 8)] == [8, 8, 8, 8, 8, 2]
    assert plan_batches(42, 8)[-1] == [41, 42]


def test_42_questions_use_six_batches():
    chat = FakeChat(count_reply="There are 42 questions.")
    result = evaluate(chat)

    assert [len(b) for b in chat.batch_requests] == [8, 8, 8, 8, 8, 2]
    assert chat.batch_requests[0] == list(range(1, 9))
    assert result.total_questions_detected == 42
    assert [a.question_no for a in result.answers] == list(range(1, 43))
    assert result.overall_performance.study_recommendations[0] == "Review questions with low scores"
    assert result.questions_by_section == {"Section A": 42}


def test_failed_batch_is_skipped():
    chat = FakeChat(count_reply="20", failing_batches={2})
    result = evaluate(chat)

    assert len(chat.batch_requests) == 3
    # questions 9-16 are missing; the rest are renumbered 1..12
    assert result.total_questions_detected == 12
    assert [a.question_no for a in result.answers] == list(range(1, 13))
    assert [a.question for a in result.answers][8] == "Question 17"


def test_all_batches_failing_raises():
    statuses = []
    chat = FakeChat(count_reply="10", failing_batches={1, 2})

    with pytest.raises(EvaluationFailedError) as exc_info:
        evaluate(chat, on_status=lambda status, message: statuses.append(status))

    assert len(exc_info.value.batch_errors) == 2
    assert statuses[0] == "pending"
    assert statuses[-1] == "failed"


def test_small_paper_uses_single_shot():
    chat = FakeChat(count_reply="3", single_reply=single_shot_reply(
        [answer(1, 2, 2), answer(2, 2, 2), answer(3, 0, 2)]
    ))
    statuses = []

    async def on_status(status, message):
        statuses.append(status)

    result = evaluate(chat, on_status=on_status)

    assert chat.batch_requests == []
    assert chat.formats == ["text", "json"]
    assert result.overall_performance.personalized_summary == "Asha did well."
    assert result.answers[2].answer_matches is False
    assert statuses[0] == "pending"
    assert "processing" in statuses
    assert statuses[-1] == "completed"


def test_single_shot_truncated_output_is_repaired():
    full = single_shot_reply([answer(1), answer(2), answer(3)])
    truncated = full[: full.index('"question_no": 3')]
    chat = FakeChat(count_reply="3", single_reply=truncated)

    result = evaluate(chat)

    assert result.total_questions_detected == 2
    assert result.student_name == "Asha Rao"


def test_single_shot_garbage_raises_malformed():
    chat = FakeChat(count_reply="3", single_reply="Sorry, I can't do that.")
    with pytest.raises(MalformedEvaluationResponseError):
        evaluate(chat)


def test_single_shot_without_student_name_is_rejected():
    reply = json.dumps({"answers": [answer(1)]})
    with pytest.raises(InvalidEvaluationShapeError):
        evaluate(FakeChat(count_reply="1", single_reply=reply))


def test_single_shot_call_failure_raises_evaluation_failed():
    chat = FakeChat(count_reply="2", single_reply=TimeoutError("timed out"))
    with pytest.raises(EvaluationFailedError):
        evaluate(chat)


def test_count_falls_back_to_pattern_scan():
    reply = single_shot_reply([answer(1), answer(2), answer(3)])
    chat = FakeChat(count_reply=RuntimeError("rate limited"), single_reply=reply)
    result = evaluate(chat)
    assert chat.batch_requests == []
    assert result.total_questions_detected == 3


def test_threshold_is_configurable():
    chat = FakeChat(count_reply="3")
    result = evaluate(chat, single_shot_threshold=2, question_batch_size=2)
    assert chat.batch_requests == [[1, 2], [3]]
    assert result.total_questions_detected == 3


def test_parse_count():
    assert parse_count("42") == 42
    assert parse_count("The paper has 17 questions in 3 sections") == 17
    assert parse_count("none") == 0


def test_estimate_question_count():
    paper = "SECTION A\nQ1. Define force.\nQ2. State Ohm's law.\nSECTION B\n14. Derive v = u + at."
    assert estimate_question_count(paper) == 14
    assert estimate_question_count("Write an essay on monsoons.") == 0


class InfinityScoreChat(FakeChat):
    """Batch replies whose first answer carries an ``Infinity`` literal."""

    async def complete(self, system, user, response_format="json"):
        reply = await super().complete(system, user, response_format)
        if response_format == "text":
            return reply
        data = json.loads(reply)
        data["answers"][0]["score"] = [1, float("inf")]
        return json.dumps(data)


def test_batched_reply_with_infinity_score_is_repaired():
    result = evaluate(InfinityScoreChat(count_reply="6"))

    assert list(result.answers[0].score) == [0, 0]
    assert result.answers[0].answer_matches is False
    assert result.total_questions_detected == 6
    assert "scored 10/10" in result.overall_performance.personalized_summary


def test_single_shot_reply_with_infinity_is_repaired():
    reply = single_shot_reply(
        [answer(1, 1, float("inf")), answer(2, 2, 2), answer(3, 2, 2)],
        questions_by_section={"Section A": float("inf")},
    )
    assert "Infinity" in reply

    result = evaluate(FakeChat(count_reply="3", single_reply=reply))

    assert list(result.answers[0].score) == [0, 0]
    assert result.questions_by_section == {"Section A": 0}
