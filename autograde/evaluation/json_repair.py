"""
JSON recovery for LLM evaluation output.

Models asked for JSON still return byte-order marks, prose around the
object, markdown fences and, when they hit the token limit, objects cut
off half way through the ``answers`` array. ``parse_with_repair`` tries
each step of ``REPAIR_LADDER`` in order and returns the first result that
parses.
"""

import json
import re
from typing import Any, Callable, List, Optional, Tuple

from autograde.errors import MalformedEvaluationResponseError
from autograde.utils.logger import get_logger

log = get_logger(__name__)

BOM = "﻿"
FENCED_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
OBJECT_RE = re.compile(r"\{[\s\S]*\}")
ANSWERS_KEY_RE = re.compile(r'"answers"\s*:\s*\[')


def _without_bom(text: str) -> str:
    return text.lstrip(BOM).strip()


def _object_span(text: str) -> str:
    text = _without_bom(text)
    if text.startswith("{") or text.startswith("["):
        return text
    fenced = FENCED_RE.search(text)
    if fenced:
        return fenced.group(1)
    match = OBJECT_RE.search(text)
    if match:
        return match.group(0)
    start = text.find("{")
    if start == -1:
        raise ValueError("no JSON object in response")
    return text[start:]


def _closing_positions(text: str, start: int = 0) -> List[Tuple[int, int]]:
    """
    ``(index, depth_after)`` for every ``}`` or ``]`` outside strings,
    scanning from *start* with depth 0.
    """
    positions = []
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            positions.append((i, depth))
    return positions


# ── Ladder steps: each returns parsed JSON or raises ValueError ──

def parse_direct(text: str) -> Any:
    return json.loads(text)


def parse_without_bom(text: str) -> Any:
    return json.loads(_without_bom(text))


def parse_extracted_object(text: str) -> Any:
    return json.loads(_object_span(text))


def parse_truncated_to_last_brace(text: str) -> Any:
    span = _object_span(text)
    top_level = [i for i, depth in _closing_positions(span) if depth == 0 and span[i] == "}"]
    if top_level:
        return json.loads(span[: top_level[-1] + 1])
    last = span.rfind("}")
    if last == -1:
        raise ValueError("no closing brace in response")
    return json.loads(span[: last + 1])


def salvage_answers(text: str) -> Any:
    """
    Keep every complete object in the ``answers`` array and rebuild the
    envelope from whatever precedes it.
    """
    span = _object_span(text)
    key = ANSWERS_KEY_RE.search(span)
    if key is None:
        raise ValueError('no "answers" array in response')

    array_start = key.end()
    answers = []
    object_start: Optional[int] = None
    depth = 0
    in_string = False
    escaped = False
    for i in range(array_start, len(span)):
        ch = span[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            if depth == 0 and ch == "{":
                object_start = i
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth < 0:
                break  # end of the answers array
            if depth == 0 and ch == "}" and object_start is not None:
                try:
                    answers.append(json.loads(span[object_start: i + 1]))
                except ValueError:
                    log.debug("Dropping unparseable answer object at offset %d", object_start)
                object_start = None

    if not answers:
        raise ValueError("no complete answer objects to salvage")

    envelope = {}
    header = span[: key.start()].rstrip().rstrip(",")
    try:
        envelope = json.loads(header + "}")
    except ValueError:
        log.warning("Could not recover the fields before \"answers\"")
    if not isinstance(envelope, dict):
        envelope = {}
    envelope["answers"] = answers
    return envelope


REPAIR_LADDER: Tuple[Tuple[str, Callable[[str], Any]], ...] = (
    ("direct", parse_direct),
    ("strip_bom", parse_without_bom),
    ("extract_object", parse_extracted_object),
    ("truncate_to_last_brace", parse_truncated_to_last_brace),
    ("salvage_answers", salvage_answers),
)


def parse_with_repair(raw: str, allow_list: bool = False) -> Any:
    """
    Parse *raw* model output, repairing it if needed.

    Args:
        raw: The model's response text.
        allow_list: Accept a top-level JSON array as well as an object.

    Returns:
        The parsed object (or list, if *allow_list*).

    Raises:
        MalformedEvaluationResponseError: Every repair step failed.
    """
    accepted = (dict, list) if allow_list else (dict,)
    for name, step in REPAIR_LADDER:
        try:
            result = step(raw or "")
        except ValueError:
            continue
        if isinstance(result, accepted):
            if name != "direct":
                log.warning("Evaluation response recovered with '%s'", name)
            return result

    log.error("Could not parse evaluation response (%d chars)", len(raw or ""))
    raise MalformedEvaluationResponseError("Evaluation response is not valid JSON", raw or "")
