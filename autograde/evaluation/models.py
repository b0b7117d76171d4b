"""
Evaluation result schema.

The validators here only check invariants; repairing model output into a
shape that satisfies them is the job of
:mod:`autograde.evaluation.validation`.
"""

from typing import Dict, List, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

Number = Union[int, float]

DEFAULT_SECTION = "Main Section"


class StudentInfo(BaseModel):
    name: str
    roll_number: str = ""
    class_name: str = ""
    subject: str = ""


class AnswerRecord(BaseModel):
    """Grading of one question."""

    question_no: int
    section: str = DEFAULT_SECTION
    question: str = ""
    expected_answer: str = ""
    answer: str = ""
    raw_extracted_text: str = ""
    score: Tuple[Number, Number]  # (awarded, possible)
    remarks: str = ""
    confidence: float = 0.0
    concepts: List[str] = Field(default_factory=list)
    missing_elements: List[str] = Field(default_factory=list)
    answer_matches: bool = False
    personalized_feedback: str = ""
    alignment_notes: str = ""

    @property
    def awarded(self) -> Number:
        return self.score[0]

    @property
    def possible(self) -> Number:
        return self.score[1]

    @model_validator(mode="after")
    def _check_score(self):
        awarded, possible = self.score
        if not 0 <= awarded <= possible:
            raise ValueError(f"score must satisfy 0 <= awarded <= possible, got {list(self.score)}")
        if self.answer_matches != (awarded > 0):
            raise ValueError("answer_matches must equal awarded > 0")
        return self


class OverallPerformance(BaseModel):
    strengths: List[str] = Field(default_factory=list)
    areas_for_improvement: List[str] = Field(default_factory=list)
    study_recommendations: List[str] = Field(default_factory=list)
    personalized_summary: str = ""


class EvaluationResult(BaseModel):
    """Complete evaluation of one student's answer sheet."""

    model_config = ConfigDict(populate_by_name=True)

    student_name: str
    roll_no: str = ""
    class_name: str = Field("", alias="class")
    subject: str = ""
    total_questions_detected: int
    questions_by_section: Dict[str, int] = Field(default_factory=dict)
    overall_performance: OverallPerformance = Field(default_factory=OverallPerformance)
    answers: List[AnswerRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_answers(self):
        if self.total_questions_detected != len(self.answers):
            raise ValueError(
                f"total_questions_detected ({self.total_questions_detected}) "
                f"!= number of answers ({len(self.answers)})"
            )
        numbers = [a.question_no for a in self.answers]
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValueError("question numbers must run 1..N in order")
        return self

    def to_dict(self) -> dict:
        """JSON-ready dict using the wire field names (``class``)."""
        return self.model_dump(mode="json", by_alias=True)
