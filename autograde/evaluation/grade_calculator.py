"""
Grade Calculator — totals and percentages for an evaluation.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Union

from autograde.evaluation.models import AnswerRecord
from autograde.utils.logger import get_logger

log = get_logger(__name__)


def round_half_up(value: float, places: int = 2) -> float:
    """Round like a person would: 2.345 -> 2.35, never banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _score_pair(answer: Union[AnswerRecord, Dict[str, Any]]):
    if isinstance(answer, AnswerRecord):
        return answer.score
    return answer["score"]


def percentage(obtained: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return round_half_up(obtained / total * 100)


def compute_final_score(answers: Iterable[Union[AnswerRecord, Dict[str, Any]]]) -> Dict[str, float]:
    """
    Sum marks and calculate overall percentage.

    Accepts ``AnswerRecord`` objects or answer dicts with a ``score`` pair.
    """
    total_obtained = 0
    total_allocated = 0
    for answer in answers:
        awarded, possible = _score_pair(answer)
        total_obtained += awarded
        total_allocated += possible

    if total_allocated == 0:
        return {"obtained": 0.0, "total": 0.0, "percentage": 0.0}

    return {
        "obtained": round_half_up(total_obtained),
        "total": round_half_up(total_allocated),
        "percentage": percentage(total_obtained, total_allocated),
    }
