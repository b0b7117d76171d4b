"""
Question counting: how many questions does a paper have?

The count only picks an evaluation strategy, so an estimate is enough.
A dedicated chat call is tried first; if it fails or gives no number, a
regex scan of the paper is used instead.
"""

import re

from autograde.evaluation.chat_client import ChatCompleter
from autograde.evaluation.prompts import COUNT_SYSTEM_PROMPT, build_count_prompt
from autograde.utils.logger import get_logger

log = get_logger(__name__)

FIRST_INT_RE = re.compile(r"\d+")

QUESTION_PATTERNS = (
    re.compile(r"(?:Q|Question|Q\.|Question\.)\s*(\d+)", re.IGNORECASE),
    re.compile(r"^\s*(\d+)\s*[.)]", re.MULTILINE),
    re.compile(r"(?:[A-Z]\.\s*|[A-Z]\)\s*)(\d+)"),
    re.compile(r"(?:MCQ|Multiple Choice|Objective|Subjective)\s*(\d+)", re.IGNORECASE),
)
MAX_PLAUSIBLE_QUESTIONS = 500


def parse_count(reply: str) -> int:
    """First integer in *reply*, or 0."""
    match = FIRST_INT_RE.search(reply or "")
    return int(match.group(0)) if match else 0


def estimate_question_count(question_paper: str) -> int:
    """
    Highest question number found by the usual numbering patterns.

    Returns 0 when nothing looks like a numbered question.
    """
    highest = 0
    q_labels = 0
    for i, pattern in enumerate(QUESTION_PATTERNS):
        matches = [int(m) for m in pattern.findall(question_paper or "")]
        matches = [n for n in matches if n <= MAX_PLAUSIBLE_QUESTIONS]
        if i == 0:
            q_labels = len(matches)
        if matches:
            highest = max(highest, max(matches))
    return max(highest, q_labels)


async def count_questions(chat: ChatCompleter, question_paper: str) -> int:
    """Question count from the model, falling back to :func:`estimate_question_count`."""
    try:
        reply = await chat.complete(COUNT_SYSTEM_PROMPT, build_count_prompt(question_paper), "text")
        count = parse_count(reply)
        if count > 0:
            log.info("Question count from model: %d", count)
            return count
        log.warning("Question count reply had no number: %r", (reply or "")[:100])
    except Exception as exc:
        log.warning("Question count call failed: %s", exc)

    count = estimate_question_count(question_paper)
    log.info("Question count from pattern scan: %d", count)
    return count
