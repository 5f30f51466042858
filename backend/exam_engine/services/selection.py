"""
Question selection - per-attempt snapshotting, stripping and durations.

Two read paths never mix:
- preview: the live pool of a test with no attempt yet; shuffled only when
  the test's shuffleQuestions flag is set, never persisted
- attempt: the persisted snapshot, always served in its stored order

Selection for a new attempt shuffles BEFORE truncating, so a capped test
draws a different subset per attempt instead of always the same prefix.
"""

import copy
import math
import random
from typing import List, Optional

from exam_engine.config import DEFAULT_PER_QUESTION_SECONDS

# Fields that may reach a student while the test is running
_PUBLIC_FIELDS = (
    "id", "text", "image", "latexContent", "type", "topic", "subtopic",
    "marks", "negativeMarks", "shuffleOptions", "timeLimit",
)
_PUBLIC_SUB_FIELDS = ("id", "text", "image", "latexContent", "type", "marks", "negativeMarks")


def new_rng() -> random.Random:
    """A fresh, independently seeded generator for one attempt."""
    return random.Random()


def fisher_yates(items: list, rng: random.Random) -> list:
    """Return a uniformly shuffled copy of ``items``."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def max_questions(config: dict) -> int:
    try:
        value = int(config.get("maxQuestionsToAttempt") or 0)
    except (TypeError, ValueError):
        return 0
    return max(value, 0)


def select_questions(pool: list, config: dict, rng: random.Random = None) -> list:
    """
    Build the question snapshot for a new attempt.

    1. Start from the pool in authored order
    2. Shuffle if shuffleQuestions is set or a maxQuestionsToAttempt cap exists
    3. Keep the first maxQuestionsToAttempt questions when capped
    """
    rng = rng or new_rng()
    selected = copy.deepcopy(list(pool))
    limit = max_questions(config)

    if config.get("shuffleQuestions") or limit > 0:
        selected = fisher_yates(selected, rng)

    if limit > 0:
        selected = selected[:limit]

    return selected


def strip_question(question: dict) -> dict:
    """Copy of a question without correct answers, ranges or solutions."""
    stripped = {k: question.get(k) for k in _PUBLIC_FIELDS if k in question}
    kind = question.get("type")

    if kind in ("mcq", "msq"):
        stripped["options"] = question.get("options") or []
    elif kind == "fillblank":
        stripped["caseSensitive"] = bool(question.get("caseSensitive"))
        stripped["isNumberRange"] = bool(question.get("isNumberRange"))
    elif kind == "comprehension":
        stripped["comprehensionText"] = question.get("comprehensionText")
        stripped["comprehensionImage"] = question.get("comprehensionImage")
        stripped["subQuestions"] = [_strip_sub_question(sq) for sq in question.get("subQuestions") or []]

    return stripped


def _strip_sub_question(sub: dict) -> dict:
    stripped = {k: sub.get(k) for k in _PUBLIC_SUB_FIELDS if k in sub}
    if sub.get("type") in ("mcq", "msq"):
        stripped["options"] = sub.get("options") or []
    elif sub.get("type") == "fillblank":
        stripped["caseSensitive"] = bool(sub.get("caseSensitive"))
        stripped["isNumberRange"] = bool(sub.get("isNumberRange"))
    return stripped


def preview_questions(pool: list, config: dict, rng: random.Random = None) -> List[dict]:
    """Stripped live pool for a student who has not started yet."""
    questions = [strip_question(q) for q in pool]
    if config.get("shuffleQuestions"):
        questions = fisher_yates(questions, rng or new_rng())
    return questions


def snapshot_questions(snapshot: list) -> List[dict]:
    """Stripped attempt snapshot, in its persisted order."""
    return [strip_question(q) for q in snapshot]


def _question_seconds(question: dict, default_seconds: int) -> int:
    return question.get("timeLimit") or default_seconds or DEFAULT_PER_QUESTION_SECONDS


def derive_duration_minutes(questions: list, config: dict,
                            explicit_minutes: Optional[int] = None) -> Optional[int]:
    """
    Total test duration in minutes.

    With per-question timing enabled this is the ceiling of the summed
    per-question limits (comprehension sub-questions counted individually);
    otherwise the explicit deployment duration is authoritative.
    """
    if not config.get("enablePerQuestionTimer"):
        return explicit_minutes

    default_seconds = config.get("perQuestionDuration") or DEFAULT_PER_QUESTION_SECONDS
    total_seconds = 0
    for q in questions:
        if q.get("type") == "comprehension" and q.get("subQuestions"):
            for sq in q["subQuestions"]:
                total_seconds += _question_seconds(sq, default_seconds)
        else:
            total_seconds += _question_seconds(q, default_seconds)
    return math.ceil(total_seconds / 60)
