import json

import pytest

from autograde.errors import MalformedEvaluationResponseError
from autograde.evaluation.json_repair import (
    parse_truncated_to_last_brace,
    parse_with_repair,
    salvage_answers,
)

from conftest import answer

ENVELOPE = {
    "student_name": "Asha",
    "total_questions_detected": 3,
    "answers": [answer(1), answer(2, 0, 1), answer(3)],
}


def test_valid_json_parses_directly():
    assert parse_with_repair(json.dumps(ENVELOPE)) == ENVELOPE


def test_leading_bom_is_stripped():
    assert parse_with_repair("﻿" + json.dumps(ENVELOPE)) == ENVELOPE


def test_prose_around_object():
    raw = f"Here is the evaluation:\n{json.dumps(ENVELOPE)}\nLet me know if you need more."
    assert parse_with_repair(raw) == ENVELOPE


def test_markdown_fenced_object():
    raw = f"```json\n{json.dumps(ENVELOPE, indent=2)}\n```"
    assert parse_with_repair(raw) == ENVELOPE


def test_trailing_garbage_after_object():
    raw = json.dumps(ENVELOPE) + "\n}\nNote: scores are final."
    assert parse_truncated_to_last_brace(raw) == ENVELOPE
    assert parse_with_repair(raw) == ENVELOPE


def test_truncated_answers_keep_complete_objects():
    full = json.dumps(ENVELOPE)
    cut = full.index('"question_no": 3') + 5  # inside the third answer
    truncated = full[:cut]

    parsed = parse_with_repair(truncated)

    assert parsed["student_name"] == "Asha"
    assert parsed["answers"] == ENVELOPE["answers"][:2]


def test_truncated_with_nested_lists_and_escaped_quotes():
    envelope = {
        "student_name": "Ben",
        "answers": [
            answer(1, remarks='Said "four" instead of 4 {sic}', concepts=["a", "b"]),
            answer(2),
        ],
    }
    full = json.dumps(envelope)
    truncated = full[: full.rindex('"remarks"')]

    parsed = salvage_answers(truncated)

    assert parsed["answers"] == envelope["answers"][:1]
    assert parsed["student_name"] == "Ben"


def test_unrecoverable_response_raises_with_excerpt():
    raw = "I'm sorry, I cannot grade this answer sheet. " * 30
    with pytest.raises(MalformedEvaluationResponseError) as exc_info:
        parse_with_repair(raw)
    assert exc_info.value.raw_excerpt == raw[:500]
    assert len(exc_info.value.raw_excerpt) == 500


def test_truncated_before_any_complete_answer_raises():
    with pytest.raises(MalformedEvaluationResponseError):
        parse_with_repair('{"student_name": "Asha", "answers": [{"question_no": 1, "sc')


def test_top_level_list_only_when_allowed():
    raw = json.dumps([answer(1)])
    assert parse_with_repair(raw, allow_list=True) == [answer(1)]
    with pytest.raises(MalformedEvaluationResponseError):
        parse_with_repair(raw)
