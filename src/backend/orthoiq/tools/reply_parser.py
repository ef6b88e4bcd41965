"""
Reply parsing for batched conference questions.

A specialist answering several questions at once is asked for a JSON
envelope ``{"answers": [...]}``. When it replies in prose instead, answers
are recovered from a numbered list (``1.`` / ``2)`` at the start of a line).
If neither works, the whole reply stands in for every question.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional

from orthoiq.services.llm import extract_json

logger = logging.getLogger(__name__)

_NUMBERED_LINE = re.compile(r"^[ \t]*(?:\*\*)?(\d{1,2})[.)](?:\*\*)?[ \t]+", re.MULTILINE)
_SENTENCE_END = re.compile(r"[.!?]\s+")

INSIGHT_MAX_CHARS = 150


def _answer_text(item: Any) -> str:
    if isinstance(item, str):
        return item.strip()
    if isinstance(item, dict):
        for key in ("answer", "response", "text", "content"):
            if isinstance(item.get(key), str):
                return item[key].strip()
    return json.dumps(item, default=str)


def parse_envelope(reply: str) -> Optional[List[str]]:
    """Answers from a ``{"answers": [...]}`` envelope, or None."""
    if "{" not in reply:
        return None
    try:
        data = json.loads(extract_json(reply))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("answers"), list):
        return None
    answers = [_answer_text(a) for a in data["answers"]]
    return answers or None


def parse_numbered(reply: str) -> Optional[List[str]]:
    """Answers split on line-anchored ``N.`` markers, in order of appearance."""
    markers = list(_NUMBERED_LINE.finditer(reply))
    if not markers:
        return None
    answers = []
    for i, m in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(reply)
        answers.append(reply[m.end():end].strip())
    return answers


def parse_answers(reply: str, question_count: int) -> List[str]:
    """
    Split a batched reply into exactly ``question_count`` answers.

    Missing positions fall back to the whole reply.
    """
    reply = (reply or "").strip()
    answers = parse_envelope(reply)
    if answers is None:
        answers = parse_numbered(reply)
    if answers is None:
        logger.debug("Unstructured conference reply; applying it to all %d questions", question_count)
        return [reply] * question_count
    return [answers[i] if i < len(answers) and answers[i] else reply for i in range(question_count)]


def refined_insight(answer: str) -> str:
    """First sentence of an answer, truncated to 150 characters."""
    first = _SENTENCE_END.split(answer.strip(), maxsplit=1)[0]
    if len(first) > INSIGHT_MAX_CHARS:
        return first[: INSIGHT_MAX_CHARS - 3] + "..."
    return first
