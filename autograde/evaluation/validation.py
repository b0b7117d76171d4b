"""
Post-parse validation and repair of evaluation output.

Turns a parsed (possibly sloppy) model response into an
:class:`~autograde.evaluation.models.EvaluationResult` whose invariants
hold: one answer per detected question, question numbers ``1..N``,
``0 <= awarded <= possible`` and ``answer_matches == (awarded > 0)``.
"""

import math
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from autograde.errors import InvalidEvaluationShapeError
from autograde.evaluation.grade_calculator import compute_final_score
from autograde.evaluation.models import (
    DEFAULT_SECTION,
    EvaluationResult,
    StudentInfo,
)
from autograde.utils.logger import get_logger

log = get_logger(__name__)

MISMATCH_NOTE = "Answer doesn't match the expected content."
DEFAULT_ALIGNMENT_NOTE = "Answer is properly aligned with the question."
_MISMATCH_MARKERS = ("doesn't match", "does not match", "not match")

_TEXT_FIELDS = (
    "section", "question", "expected_answer", "answer",
    "raw_extracted_text", "remarks", "personalized_feedback", "alignment_notes",
)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [_as_text(v) for v in value if v is not None]
    return [_as_text(value)]


def _as_number(value: Any) -> Optional[float]:
    """Parse *value* as a number; integral values come back as ``int``."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = value
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    if isinstance(number, float) and not math.isfinite(number):
        return None
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def normalize_score(value: Any) -> Tuple[float, float]:
    """
    Coerce *value* to ``(awarded, possible)`` with ``0 <= awarded <= possible``.

    Missing or unreadable parts become 0; a bare number is treated as
    marks awarded out of the same number.
    """
    if isinstance(value, (list, tuple)):
        parts = list(value) + [None, None]
        awarded, possible = _as_number(parts[0]), _as_number(parts[1])
    else:
        awarded = _as_number(value)
        possible = awarded

    awarded = awarded if awarded is not None else 0
    possible = possible if possible is not None else 0
    possible = max(possible, 0)
    awarded = min(max(awarded, 0), possible)
    return awarded, possible


def repair_answer(record: Dict[str, Any]) -> Dict[str, Any]:
    """Fill defaults and enforce score consistency on one answer dict."""
    fixed = dict(record)
    for field in _TEXT_FIELDS:
        fixed[field] = _as_text(fixed.get(field)).strip()

    if not fixed["raw_extracted_text"]:
        fixed["raw_extracted_text"] = fixed["answer"]

    original_score = fixed.get("score")
    awarded, possible = normalize_score(original_score)
    if not isinstance(original_score, (list, tuple)) or [awarded, possible] != list(original_score):
        log.warning("Q%s: score %r adjusted to [%s, %s]",
                    fixed.get("question_no"), original_score, awarded, possible)
    fixed["score"] = [awarded, possible]

    matches = awarded > 0
    if "answer_matches" in record and bool(record["answer_matches"]) != matches:
        log.warning("Q%s: answer_matches=%r overridden to %r",
                    fixed.get("question_no"), record["answer_matches"], matches)
    fixed["answer_matches"] = matches

    remarks = fixed["remarks"]
    if not matches and not any(m in remarks.lower() for m in _MISMATCH_MARKERS):
        fixed["remarks"] = f"{MISMATCH_NOTE} {remarks}".strip()

    if not fixed["personalized_feedback"]:
        fixed["personalized_feedback"] = fixed["remarks"]
    if not fixed["section"]:
        fixed["section"] = DEFAULT_SECTION
    if not fixed["alignment_notes"]:
        fixed["alignment_notes"] = DEFAULT_ALIGNMENT_NOTE

    confidence = _as_number(fixed.get("confidence"))
    fixed["confidence"] = min(max(confidence, 0.0), 1.0) if confidence is not None else 0.0
    fixed["concepts"] = _as_str_list(fixed.get("concepts"))
    fixed["missing_elements"] = _as_str_list(fixed.get("missing_elements"))
    return fixed


def count_by_section(answers: List[Dict[str, Any]]) -> Dict[str, int]:
    return dict(Counter(a.get("section") or DEFAULT_SECTION for a in answers))


def generic_overall_performance(answers: List[Dict[str, Any]], student_name: str) -> Dict[str, Any]:
    """Score-derived summary used when the model did not write one."""
    summary = compute_final_score(answers)

    def _topic(a):
        concepts = a.get("concepts") or []
        return concepts[0] if concepts else f"question {a['question_no']}"

    strong = [a for a in answers if a["score"][1] and a["score"][0] > a["score"][1] * 0.7]
    weak = [a for a in answers if a["score"][1] and a["score"][0] < a["score"][1] * 0.5]
    strengths = [f"Strong performance in {_topic(a)}" for a in strong[:3]]
    improvements = [f"Improve understanding of {_topic(a)}" for a in weak[:3]]

    verdict = ("Good performance overall." if summary["percentage"] >= 70
               else "Areas for improvement identified.")
    return {
        "strengths": strengths or ["Continue working on core concepts"],
        "areas_for_improvement": improvements or ["Review all topics covered"],
        "study_recommendations": [
            "Review questions with low scores",
            "Practice similar question types",
            "Focus on weak concepts identified",
        ],
        "personalized_summary": (
            f"{student_name} scored {summary['obtained']:g}/{summary['total']:g} "
            f"({summary['percentage']:.1f}%). {verdict}"
        ),
    }


def validate_evaluation(
    raw: Any,
    student_info: Optional[StudentInfo] = None,
    fill_student_name: bool = False,
) -> EvaluationResult:
    """
    Validate and repair a parsed evaluation response.

    Args:
        raw: Parsed JSON from the model.
        student_info: Used for the student fields the model left out.
        fill_student_name: Take ``student_name`` from *student_info* when
            missing instead of rejecting the response.

    Raises:
        InvalidEvaluationShapeError: ``student_name`` missing or
            ``answers`` not a list.
    """
    if not isinstance(raw, dict):
        raise InvalidEvaluationShapeError(
            f"Evaluation response must be a JSON object, got {type(raw).__name__}"
        )

    data = dict(raw)
    student_name = _as_text(data.get("student_name")).strip()
    if not student_name:
        if fill_student_name and student_info is not None:
            student_name = student_info.name
        else:
            raise InvalidEvaluationShapeError("Evaluation response is missing student_name")

    answers = data.get("answers")
    if not isinstance(answers, list):
        raise InvalidEvaluationShapeError("Evaluation response 'answers' must be a list")

    records = [a for a in answers if isinstance(a, dict)]
    if len(records) != len(answers):
        log.warning("Dropped %d non-object entries from answers", len(answers) - len(records))

    detected = data.get("total_questions_detected")
    if detected != len(records):
        log.warning("total_questions_detected=%r does not match %d answers, correcting",
                    detected, len(records))

    numbers = [r.get("question_no") for r in records]
    if numbers != list(range(1, len(records) + 1)):
        log.warning("Question numbers %s are not 1..%d, renumbering", numbers, len(records))
        records = [{**r, "question_no": i} for i, r in enumerate(records, start=1)]

    records = [repair_answer(r) for r in records]

    info = student_info or StudentInfo(name=student_name)
    result = {
        "student_name": student_name,
        "roll_no": _as_text(data.get("roll_no")) or info.roll_number,
        "class": _as_text(data.get("class")) or info.class_name,
        "subject": _as_text(data.get("subject")) or info.subject,
        "total_questions_detected": len(records),
        "answers": records,
    }

    by_section = data.get("questions_by_section")
    if isinstance(by_section, dict) and by_section:
        result["questions_by_section"] = {
            _as_text(k): int(_as_number(v) or 0) for k, v in by_section.items()
        }
    else:
        result["questions_by_section"] = count_by_section(records)

    overall = data.get("overall_performance")
    if isinstance(overall, dict) and overall:
        result["overall_performance"] = {
            "strengths": _as_str_list(overall.get("strengths")),
            "areas_for_improvement": _as_str_list(overall.get("areas_for_improvement")),
            "study_recommendations": _as_str_list(overall.get("study_recommendations")),
            "personalized_summary": _as_text(overall.get("personalized_summary")),
        }
    else:
        result["overall_performance"] = generic_overall_performance(records, student_name)

    try:
        return EvaluationResult.model_validate(result)
    except ValidationError as exc:
        raise InvalidEvaluationShapeError(f"Evaluation response failed validation: {exc}") from exc
