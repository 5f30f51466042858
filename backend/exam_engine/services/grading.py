"""
Grading Engine - scores submitted answers against an attempt's snapshot.

Rules per question type:
1. mcq: the submitted index must equal the single correct index
2. msq: the submitted set of indices must equal the correct set exactly
3. fillblank (range): the whitespace-stripped number must lie in [min, max]
4. fillblank (text): normalized strings must match (case-insensitive unless configured)
5. broad: never auto-graded, always 0

A correct answer earns +marks, a wrong one -negativeMarks, and a blank one 0
regardless of type. The attempt total is floored at zero AFTER summation, so
individual deductions still offset other questions' credit.

Everything here is pure: no database access and no exceptions for malformed
answers; a bad record degrades to zero/incorrect.
"""

import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from exam_engine.config import DEFAULT_PASSING_PERCENTAGE
from exam_engine.logging_config import get_logger, log_with_context

logger = get_logger("grading")


@dataclass
class GradedAnswer:
    question_id: str
    answer: Any
    is_correct: bool
    marks_awarded: float
    time_taken: int = 0

    def to_dict(self) -> dict:
        return {
            "questionId": self.question_id,
            "answer": self.answer,
            "isCorrect": self.is_correct,
            "marksAwarded": self.marks_awarded,
            "timeTaken": self.time_taken,
        }


@dataclass
class GradeResult:
    answers: List[GradedAnswer] = field(default_factory=list)
    score: float = 0
    total_marks: float = 1
    percentage: int = 0
    passed: bool = False
    correct_count: int = 0
    incorrect_count: int = 0
    unanswered_count: int = 0

    @property
    def answer_dicts(self) -> List[dict]:
        return [a.to_dict() for a in self.answers]


def is_blank(answer) -> bool:
    """Null, empty string and empty list all count as unanswered."""
    if answer is None:
        return True
    if isinstance(answer, str) and answer == "":
        return True
    if isinstance(answer, (list, tuple)) and len(answer) == 0:
        return True
    return False


def question_marks(question: dict) -> float:
    """Positive credit for a question; unset or zero marks count as 1."""
    return question.get("marks") or 1


def build_question_map(questions: list) -> Dict[str, dict]:
    """
    Index a snapshot by question id, including comprehension sub-questions.

    Top-level and nested ids share one table; ids are unique within a snapshot.
    """
    question_map = {}
    for q in questions:
        question_map[q.get("id")] = q
        if q.get("type") == "comprehension":
            for sq in q.get("subQuestions") or []:
                question_map[sq.get("id")] = sq
    return question_map


def served_total_marks(questions: list) -> float:
    """Total marks over exactly the served questions (sub-questions expanded)."""
    total = 0
    for q in questions:
        if q.get("type") == "comprehension" and q.get("subQuestions"):
            for sq in q["subQuestions"]:
                total += question_marks(sq)
        else:
            total += question_marks(q)
    return total


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _is_index(value) -> bool:
    """JSON has one number type, so 2.0 is the same choice as 2."""
    if isinstance(value, bool):
        return False
    return isinstance(value, int) or (isinstance(value, float) and value.is_integer())


def _normalize_text(value, case_sensitive: bool) -> str:
    text = " ".join(str(value).split())
    return text if case_sensitive else text.lower()


_LEADING_NUMBER = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _parse_number(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        # leading numeric prefix, so "15cm" reads as 15
        match = _LEADING_NUMBER.match("".join(str(value).split()))
        if match is None:
            return None
        number = float(match.group(0))
    return number if math.isfinite(number) else None


def _check_mcq(question: dict, answer) -> bool:
    correct = question.get("correctIndices") or []
    return bool(correct) and _is_index(answer) and correct[0] == answer


def _check_msq(question: dict, answer) -> bool:
    correct = question.get("correctIndices")
    if correct is None or not isinstance(answer, (list, tuple)):
        return False
    try:
        selected = set(answer)
    except TypeError:
        return False
    return len(selected) == len(set(correct)) and selected == set(correct)


def _check_fillblank(question: dict, answer) -> bool:
    if question.get("isNumberRange"):
        number = _parse_number(answer)
        if number is None:
            return False
        low = question.get("numberRangeMin")
        high = question.get("numberRangeMax")
        low = 0 if low is None else low
        high = 0 if high is None else high
        return low <= number <= high
    if isinstance(answer, (list, dict)):
        return False
    expected = question.get("fillBlankAnswer")
    if expected is None:
        return False
    case_sensitive = bool(question.get("caseSensitive"))
    return _normalize_text(answer, case_sensitive) == _normalize_text(expected, case_sensitive)


_CHECKERS = {
    "mcq": _check_mcq,
    "msq": _check_msq,
    "fillblank": _check_fillblank,
}


def grade_answer(question: Optional[dict], answer) -> tuple:
    """
    Grade one answer against one served question.

    Returns:
        (is_correct, marks_awarded)
    """
    if question is None or is_blank(answer):
        return False, 0

    checker = _CHECKERS.get(question.get("type"))
    if checker is None:
        # broad, comprehension parent, or unknown kind
        return False, 0

    is_correct = checker(question, answer)
    if is_correct:
        return True, question_marks(question)
    return False, -(question.get("negativeMarks") or 0)


def _dedupe_answers(answers: list) -> list:
    """Keep the last record per questionId, in first-seen order."""
    latest = {}
    for record in answers or []:
        if not isinstance(record, dict) or record.get("questionId") is None:
            continue
        latest[str(record["questionId"])] = record
    return list(latest.values())


def _time_taken(record: dict) -> int:
    value = record.get("timeTaken")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def grade_attempt(questions: list, answers: list,
                  passing_percentage: float = None,
                  context: dict = None) -> GradeResult:
    """
    Grade a full submission against a question snapshot.

    Args:
        questions: the attempt's served snapshot (never the live pool)
        answers: raw answer records [{questionId, answer, timeTaken}]
        passing_percentage: pass threshold, defaults to DEFAULT_PASSING_PERCENTAGE
        context: logging context (test_id, student_phone)

    Returns:
        GradeResult with per-answer awards and the aggregated score
    """
    start_time = time.time()

    if passing_percentage is None:
        passing_percentage = DEFAULT_PASSING_PERCENTAGE

    question_map = build_question_map(questions)
    result = GradeResult()
    running_total = 0

    for record in _dedupe_answers(answers):
        question_id = str(record["questionId"])
        answer = record.get("answer")
        is_correct, marks_awarded = grade_answer(question_map.get(question_id), answer)

        running_total += marks_awarded
        result.answers.append(GradedAnswer(
            question_id=question_id,
            answer=answer,
            is_correct=is_correct,
            marks_awarded=marks_awarded,
            time_taken=_time_taken(record),
        ))
        if is_correct:
            result.correct_count += 1
        elif is_blank(answer):
            result.unanswered_count += 1
        else:
            result.incorrect_count += 1

    result.score = max(0, running_total)
    result.total_marks = served_total_marks(questions) or 1
    result.percentage = round_half_up(result.score / result.total_marks * 100)
    result.passed = result.percentage >= passing_percentage

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO",
        "Attempt graded: score={} / {} ({}%)".format(
            result.score, result.total_marks, result.percentage),
        context=context or {},
        extra_data={
            "duration_ms": round(duration_ms, 2),
            "raw_total": running_total,
            "correct": result.correct_count,
            "incorrect": result.incorrect_count,
            "unanswered": result.unanswered_count,
        })

    return result
