"""
Prompt templates for question counting and answer-sheet evaluation.
"""

from typing import Sequence

from autograde.evaluation.models import StudentInfo

COUNT_SYSTEM_PROMPT = """You count questions in exam papers.
Scan EVERY section (Section A, B, C ...), every numbering scheme (1, 2, 3 / Q1, Q2 /
i, ii, iii / a, b, c) and every question type (MCQ, objective, subjective).
Reply with a single integer: the total number of questions. No other text."""

EVALUATION_SYSTEM_PROMPT = """You are an AI evaluator responsible for grading a student's answer sheet
and providing detailed, personalized feedback.
You MUST detect and grade ALL questions from the question paper, including MCQs,
objective questions and subjective questions.

SCORING GUIDELINES:
- MCQs: full marks for the correct option, 0 for incorrect
- Objective questions: partial marks based on key points covered
- Subjective questions: marks based on depth and accuracy
- Blank answers, or answers that don't match the expected content, get 0 marks
- A question missing from the answer sheet gets an entry with 0 marks and the remark "Question not attempted"

Return ONLY a valid JSON object with exactly this structure:
{
  "student_name": "Student Name",
  "roll_no": "Roll Number",
  "class": "Class Name",
  "subject": "Subject Name",
  "total_questions_detected": 10,
  "questions_by_section": {"Section A": 5, "Section B": 5},
  "overall_performance": {
    "strengths": ["..."],
    "areas_for_improvement": ["..."],
    "study_recommendations": ["..."],
    "personalized_summary": "..."
  },
  "answers": [ANSWER_OBJECT, ...]
}

ANSWER_OBJECT:
""" + """{
  "question_no": 1,
  "section": "Section A",
  "question": "The question text",
  "expected_answer": "The expected answer from the answer key",
  "answer": "The student's answer as you interpret it",
  "raw_extracted_text": "The exact text from the student's answer sheet",
  "score": [awarded_marks, possible_marks],
  "remarks": "Why the score was awarded or deducted",
  "confidence": 0.95,
  "concepts": ["Concept 1", "Concept 2"],
  "missing_elements": ["Example", "Formula"],
  "answer_matches": true,
  "personalized_feedback": "Actionable feedback for this question",
  "alignment_notes": "How well the answer aligns with the expected content"
}

Keep feedback concise but informative. No HTML, no markdown, no text outside the JSON."""

BATCH_SYSTEM_PROMPT = (
    "You are an AI evaluator. Grade only the question numbers you are given and "
    'return a JSON object of the form {"answers": [ANSWER_OBJECT, ...]} where each '
    "ANSWER_OBJECT has the fields question_no, section, question, expected_answer, "
    "answer, raw_extracted_text, score ([awarded, possible]), remarks, confidence, "
    "concepts, missing_elements, answer_matches, personalized_feedback and alignment_notes."
)


def _student_block(info: StudentInfo) -> str:
    return (
        "Student Information:\n"
        f"- Name: {info.name}\n"
        f"- Roll Number: {info.roll_number}\n"
        f"- Class: {info.class_name}\n"
        f"- Subject: {info.subject}"
    )


def build_count_prompt(question_paper: str) -> str:
    return f"Question Paper:\n{question_paper}\n\nHow many questions are in this paper?"


def build_evaluation_prompt(
    question_paper: str, answer_key: str, student_answers: str, info: StudentInfo
) -> str:
    """User prompt for a single-shot evaluation of every question."""
    return f"""Question Paper:
{question_paper}

Answer Key:
{answer_key}

Student Answer Sheet:
{student_answers}

{_student_block(info)}

1. Identify ALL questions in the question paper, section by section.
2. Match each question with the student's answer by question number, never by position.
3. Create a 0-mark entry for every question the student did not attempt.
4. Make total_questions_detected equal the number of entries in answers.
5. Write an overall_performance summary specific to this student."""


def build_batch_prompt(
    question_paper: str,
    answer_key: str,
    student_answers: str,
    info: StudentInfo,
    question_numbers: Sequence[int],
) -> str:
    """User prompt restricting the evaluation to *question_numbers*."""
    numbers = ", ".join(str(n) for n in question_numbers)
    return f"""Process ONLY the following question numbers: {numbers}

Question Paper (focus on questions {numbers}):
{question_paper}

Answer Key (focus on questions {numbers}):
{answer_key}

Student Answer Sheet (focus on questions {numbers}):
{student_answers}

{_student_block(info)}

Return the answers for questions {numbers} only, as {{"answers": [...]}}."""
