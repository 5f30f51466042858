"""
Analytics Aggregator - read-only statistics over completed attempts.

Four views:
- test_analytics: admin breakdown of one test (roster status, score
  distribution, cohort averages, per-question accuracy)
- student_analytics: one student's trend, rank and cohort leaderboard across
  the tests deployed to their cohort(s)
- student_result: one student's graded paper with review and rank
- list_student_tests: the student's dashboard of tests by availability

Leaderboard ordering is deterministic: average percentage descending, then
earlier first attempt, then phone number. Repeated calls over the same data
always produce the same ranks.
"""

import json
import time
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from exam_engine.config import LEADERBOARD_SIZE
from exam_engine.errors import NotFound
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.attempt import TestAttempt, IN_PROGRESS, COMPLETED
from exam_engine.models.online_test import OnlineTest
from exam_engine.models.student import Student, normalize_phone
from exam_engine.services.attempts import passing_percentage, results_pending
from exam_engine.services.grading import (
    build_question_map, is_blank, round_half_up, served_total_marks
)
from exam_engine.timeutil import elapsed_ms, isoformat, utcnow

logger = get_logger("analytics")


# ── Shared lookups ───────────────────────────────────────────

def _cohort_filter(column, batches: List[str]):
    """Coarse SQL prefilter on a JSON-encoded list column; confirm in Python."""
    return or_(*[column.contains(json.dumps(b)) for b in batches])


def roster_for(db: Session, batches: List[str]) -> List[Student]:
    """Students belonging to at least one of ``batches``."""
    if not batches:
        return []
    targets = set(batches)
    candidates = db.query(Student).filter(_cohort_filter(Student.cohorts, batches)).all()
    return [s for s in candidates if targets.intersection(s.cohort_list)]


def test_roster(db: Session, test: OnlineTest) -> Dict[str, dict]:
    """phone -> {name, phone, batch} for everyone the test is deployed to."""
    allowed = {normalize_phone(s.get("phoneNumber")) for s in test.allowed_students
               if s.get("phoneNumber")}
    targets = test.batches
    roster = {}
    for student in roster_for(db, targets):
        if allowed and student.phone not in allowed:
            continue
        batch = next((c for c in student.cohort_list if c in targets), "")
        roster[student.phone] = {"name": student.name or "Unknown", "phone": student.phone, "batch": batch}
    return roster


def deployed_tests_for(db: Session, batches: List[str]) -> List[OnlineTest]:
    if not batches:
        return []
    targets = set(batches)
    candidates = db.query(OnlineTest).filter(
        OnlineTest.status == "deployed",
        _cohort_filter(OnlineTest.deployment_batches, batches)
    ).order_by(OnlineTest.start_time.desc()).all()
    return [t for t in candidates if targets.intersection(t.batches)]


def _mean(values: list) -> float:
    return sum(values) / len(values) if values else 0


def _histogram(percentages: List[int]) -> List[dict]:
    buckets = [0] * 10
    for p in percentages:
        buckets[min(max(int(p // 10), 0), 9)] += 1
    return [{"range": "{}-{}%".format(i * 10, i * 10 + 9), "count": count}
            for i, count in enumerate(buckets)]


def _truncate(text: Optional[str], limit: int = 100) -> str:
    text = text or ""
    return text[:limit] + ("..." if len(text) > limit else "")


# ── Per-test analytics (admin) ───────────────────────────────

def _question_stats(test: OnlineTest, attempts: List[TestAttempt]) -> List[dict]:
    stats = {}

    def register(q):
        if q.get("id") not in stats:
            stats[q.get("id")] = {"correct": 0, "total": 0, "text": q.get("text"), "type": q.get("type")}

    def register_all(questions):
        for q in questions:
            if q.get("type") == "comprehension" and q.get("subQuestions"):
                for sq in q["subQuestions"]:
                    register(sq)
            else:
                register(q)

    register_all(test.questions_list)
    for attempt in attempts:
        register_all(attempt.questions_list)
        for ans in attempt.answers_list:
            stat = stats.get(ans.get("questionId"))
            if stat is None or is_blank(ans.get("answer")):
                continue
            stat["total"] += 1
            if ans.get("isCorrect"):
                stat["correct"] += 1

    return [
        {
            "questionId": question_id,
            "text": _truncate(stat["text"]),
            "type": stat["type"],
            "correctCount": stat["correct"],
            "totalAttempts": stat["total"],
            "accuracy": round_half_up(stat["correct"] / stat["total"] * 100) if stat["total"] else 0,
        }
        for question_id, stat in stats.items()
    ]


def test_analytics(db: Session, test: OnlineTest, now=None) -> dict:
    """Roster breakdown and score statistics for one test."""
    start_time = time.time()
    now = now or utcnow()

    roster = test_roster(db, test)
    attempts = db.query(TestAttempt).filter(TestAttempt.test_id == test.id).all()
    attempt_map = {a.student_phone: a for a in attempts}

    completed, in_progress, not_started = [], [], []
    for phone, student in roster.items():
        attempt = attempt_map.get(phone)
        if attempt is None:
            not_started.append(dict(student))
        elif attempt.status == COMPLETED:
            completed.append({
                **student,
                "score": attempt.score,
                "percentage": attempt.percentage,
                "submittedAt": isoformat(attempt.submitted_at),
                "timeSpent": attempt.time_spent,
                "warningCount": attempt.warning_count,
                "terminationReason": attempt.termination_reason,
            })
        elif attempt.status == IN_PROGRESS:
            in_progress.append({
                **student,
                "startedAt": isoformat(attempt.started_at),
                "timeElapsed": elapsed_ms(attempt.started_at, now),
                "warningCount": attempt.warning_count,
            })

    completed.sort(key=lambda s: (-s["score"], s["submittedAt"] or ""))

    total_students = len(roster)
    participation = (round_half_up((len(completed) + len(in_progress)) / total_students * 100)
                     if total_students else 0)
    analytics = {
        "totalStudents": total_students,
        "completedCount": len(completed),
        "inProgressCount": len(in_progress),
        "notStartedCount": total_students - len(completed) - len(in_progress),
        "participationRate": participation,
    }

    if completed:
        scores = [s["score"] for s in completed]
        percentages = [s["percentage"] for s in completed]
        passing = passing_percentage(test)
        passed_count = len([p for p in percentages if p >= passing])

        cohort_percentages = defaultdict(list)
        for s in completed:
            cohort_percentages[s["batch"]].append(s["percentage"])

        analytics.update({
            "averageScore": round_half_up(_mean(scores) * 10) / 10,
            "medianScore": sorted(scores)[len(scores) // 2],
            "highestScore": max(scores),
            "lowestScore": min(scores),
            "averagePercentage": round_half_up(_mean(percentages)),
            "medianPercentage": sorted(percentages)[len(percentages) // 2],
            "highestPercentage": max(percentages),
            "lowestPercentage": min(percentages),
            "passedCount": passed_count,
            "failedCount": len(completed) - passed_count,
            "passRate": round_half_up(passed_count / len(completed) * 100),
            "scoreDistribution": _histogram(percentages),
            "batchPerformance": [
                {"batch": batch, "avgPercentage": round_half_up(_mean(values)), "studentCount": len(values)}
                for batch, values in cohort_percentages.items()
            ],
            "questionAnalysis": _question_stats(
                test, [a for a in attempts if a.status == COMPLETED]),
        })

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO",
        "Test analytics computed: {} completed of {} students".format(len(completed), total_students),
        context={"test_id": str(test.id)},
        extra_data={"duration_ms": round(duration_ms, 2), "attempts": len(attempts)})

    return {
        "test": {
            "id": str(test.id),
            "title": test.title,
            "status": test.status,
            "totalMarks": test.total_marks,
            "duration": test.duration_minutes,
            "batches": test.batches,
            "passingPercentage": passing_percentage(test),
            "startTime": isoformat(test.start_time),
            "endTime": isoformat(test.end_time),
        },
        "analytics": analytics,
        "completed": completed,
        "inProgress": in_progress,
        "notStarted": not_started,
    }


# ── Cohort leaderboard ───────────────────────────────────────

def build_leaderboard(attempts: List[TestAttempt], names: Dict[str, str]) -> List[dict]:
    """
    Rank students by average percentage over their completed attempts.

    Ties go to the student whose first attempt started earlier, then to the
    lower phone number, so the order never depends on input order.
    """
    grouped = defaultdict(list)
    first_seen = {}
    for attempt in attempts:
        grouped[attempt.student_phone].append(attempt.percentage or 0)
        seen = first_seen.get(attempt.student_phone)
        if seen is None or attempt.started_at < seen:
            first_seen[attempt.student_phone] = attempt.started_at

    ordered = sorted(
        grouped.items(),
        key=lambda item: (-_mean(item[1]), first_seen[item[0]], item[0])
    )
    return [
        {
            "rank": position,
            "name": names.get(phone) or "Unknown",
            "phone": phone,
            "average": round_half_up(_mean(values)),
            "exactAverage": _mean(values),
            "testsAttempted": len(values),
            "firstAttemptAt": isoformat(first_seen[phone]),
        }
        for position, (phone, values) in enumerate(ordered, 1)
    ]


def student_analytics(db: Session, student: Student, batch: Optional[str] = None, now=None) -> dict:
    """Cross-test analytics for a student within their cohort(s)."""
    start_time = time.time()
    now = now or utcnow()

    cohorts = student.cohort_list
    selected = batch if batch and batch in cohorts else None
    batch_filter = [selected] if selected else cohorts

    tests = deployed_tests_for(db, batch_filter)
    tests_by_id = {t.id: t for t in tests}
    own_attempts = db.query(TestAttempt).filter(
        TestAttempt.student_phone == student.phone,
        TestAttempt.test_id.in_(list(tests_by_id))
    ).all() if tests_by_id else []
    own_map = {a.test_id: a for a in own_attempts}

    history, missed, pending = [], 0, 0
    for test in tests:
        attempt = own_map.get(test.id)
        if attempt is not None and attempt.status == COMPLETED:
            hidden = results_pending(test, now)
            history.append({
                "testId": str(test.id),
                "title": test.title,
                "percentage": None if hidden else attempt.percentage,
                "score": None if hidden else attempt.score,
                "totalMarks": served_total_marks(attempt.questions_list),
                "date": attempt.submitted_at,
                "resultsPending": hidden,
            })
        elif test.end_time and now > test.end_time:
            missed += 1
        elif test.start_time is None or now >= test.start_time:
            pending += 1

    history.sort(key=lambda h: h["date"])
    for entry in history:
        entry["date"] = isoformat(entry["date"])
    valid = [h for h in history if not h["resultsPending"]]
    valid_ids = [h["testId"] for h in valid]

    trend = "neutral"
    if len(valid) >= 2:
        current, previous = valid[-1]["percentage"], valid[-2]["percentage"]
        trend = "up" if current > previous else ("down" if current < previous else "neutral")

    roster = roster_for(db, batch_filter)
    names = {s.phone: s.name for s in roster}
    cohort_attempts = db.query(TestAttempt).filter(
        TestAttempt.test_id.in_(valid_ids),
        TestAttempt.student_phone.in_(list(names)),
        TestAttempt.status == COMPLETED
    ).all() if valid_ids and names else []

    rankings = build_leaderboard(cohort_attempts, names)
    my_rank = next((r["rank"] for r in rankings if r["phone"] == student.phone), len(rankings) + 1)

    topper_by_test = defaultdict(int)
    for attempt in cohort_attempts:
        topper_by_test[attempt.test_id] = max(topper_by_test[attempt.test_id], attempt.percentage or 0)

    leaderboard = [
        {
            "rank": r["rank"],
            "name": r["name"],
            "phone": r["phone"] if r["phone"] == student.phone else "***",
            "average": r["average"],
            "testsAttempted": r["testsAttempted"],
            "isCurrentUser": r["phone"] == student.phone,
        }
        for r in rankings[:LEADERBOARD_SIZE]
    ]

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO", "Student analytics computed",
        context={"student_phone": student.phone},
        extra_data={"duration_ms": round(duration_ms, 2), "tests": len(tests),
                    "ranked_students": len(rankings)})

    percentages = [h["percentage"] for h in valid]
    return {
        "totalTests": len(valid),
        "averageScore": round_half_up(_mean(percentages)) if percentages else 0,
        "recentScore": percentages[-1] if percentages else 0,
        "highestScore": max(percentages) if percentages else 0,
        "missed": missed,
        "pending": pending,
        "trend": trend,
        "history": history[-10:],
        "testComparison": [
            {
                "testId": h["testId"],
                "title": h["title"],
                "studentScore": h["percentage"],
                "highestScore": topper_by_test.get(h["testId"], h["percentage"]),
            }
            for h in valid
        ],
        "batchHighestAverage": rankings[0]["average"] if rankings else 0,
        "batchRank": my_rank,
        "totalBatchStudents": len(roster),
        "leaderboard": leaderboard,
        "batches": cohorts,
        "selectedBatch": selected or "",
    }


# ── Student's own result ─────────────────────────────────────

def _review_entry(ans: dict, question: dict) -> dict:
    review = {
        "questionId": ans.get("questionId"),
        "text": question.get("text"),
        "image": question.get("image"),
        "latexContent": question.get("latexContent"),
        "type": question.get("type"),
        "marks": question.get("marks"),
        "negativeMarks": question.get("negativeMarks"),
        "studentAnswer": ans.get("answer"),
        "isCorrect": bool(ans.get("isCorrect")),
        "marksAwarded": ans.get("marksAwarded", 0),
        "topic": question.get("topic"),
        "subtopic": question.get("subtopic"),
        "solutionText": question.get("solutionText"),
        "solutionImage": question.get("solutionImage"),
    }
    kind = question.get("type")
    if kind in ("mcq", "msq"):
        review["options"] = question.get("options")
        review["correctIndices"] = question.get("correctIndices")
    elif kind == "fillblank":
        review["correctAnswer"] = question.get("fillBlankAnswer")
        review["caseSensitive"] = question.get("caseSensitive")
        review["isNumberRange"] = question.get("isNumberRange")
        if question.get("isNumberRange"):
            review["numberRangeMin"] = question.get("numberRangeMin")
            review["numberRangeMax"] = question.get("numberRangeMax")
    return review


def _topic_analysis(review: List[dict]) -> List[dict]:
    topics = {}
    for entry in review:
        stats = topics.setdefault(entry["topic"] or "Uncategorized",
                                  {"correct": 0, "total": 0, "marks": 0, "maxMarks": 0})
        stats["total"] += 1
        stats["maxMarks"] += entry["marks"] or 0
        if entry["isCorrect"]:
            stats["correct"] += 1
            stats["marks"] += entry["marksAwarded"] or 0
    return [
        {"topic": topic, **stats,
         "percentage": round_half_up(stats["marks"] / stats["maxMarks"] * 100) if stats["maxMarks"] else 0}
        for topic, stats in topics.items()
    ]


def student_result(db: Session, test_id: str, student: Student, now=None) -> dict:
    """The student's graded paper, gated by the test's result visibility."""
    now = now or utcnow()
    attempt = db.query(TestAttempt).filter(
        TestAttempt.test_id == test_id,
        TestAttempt.student_phone == student.phone,
        TestAttempt.status == COMPLETED
    ).first()
    if attempt is None:
        raise NotFound("No completed attempt found")

    test = db.query(OnlineTest).filter(OnlineTest.id == test_id).first()
    if test is None:
        raise NotFound("Test not found")

    config = test.config_dict
    total_marks = served_total_marks(attempt.questions_list) or test.total_marks

    if not config.get("showResults", True):
        return {
            "error": "Results are not available for this test",
            "score": attempt.score,
            "percentage": attempt.percentage,
            "totalMarks": total_marks,
            "resultsHidden": True,
        }

    if results_pending(test, now):
        return {
            "error": "Results will be declared after the deadline",
            "score": None,
            "percentage": None,
            "totalMarks": total_marks,
            "resultsHidden": True,
            "resultsPending": True,
            "availableAt": isoformat(test.end_time),
        }

    question_map = build_question_map(attempt.questions_list)
    review = [
        _review_entry(ans, question_map[ans.get("questionId")])
        for ans in attempt.answers_list
        if ans.get("questionId") in question_map
    ]

    others = db.query(TestAttempt).filter(
        TestAttempt.test_id == test_id,
        TestAttempt.status == COMPLETED
    ).all()
    rank = len([a for a in others if a.score > attempt.score]) + 1
    roster_size = len(test_roster(db, test))
    topper = max(others, key=lambda a: a.score)

    board = sorted(others, key=lambda a: (-a.score, a.time_spent or 0, a.submitted_at or attempt.submitted_at))
    leaderboard = [
        {
            "rank": position,
            "name": a.student_name or "Unknown Student",
            "score": a.score,
            "percentage": a.percentage,
            "timeSpent": a.time_spent,
            "submittedAt": isoformat(a.submitted_at),
            "isCurrentUser": a.student_phone == student.phone,
        }
        for position, a in enumerate(board[:LEADERBOARD_SIZE], 1)
    ]

    correct = len([r for r in review if r["isCorrect"]])
    incorrect = len([r for r in review if not r["isCorrect"] and not is_blank(r["studentAnswer"])])
    passing = passing_percentage(test)

    return {
        "test": {
            "title": test.title,
            "description": test.description,
            "totalMarks": total_marks,
            "durationMinutes": test.duration_minutes,
            "passingPercentage": passing,
        },
        "result": {
            "score": attempt.score,
            "percentage": attempt.percentage,
            "timeSpent": attempt.time_spent,
            "submittedAt": isoformat(attempt.submitted_at),
            "terminationReason": attempt.termination_reason,
            "passed": attempt.percentage >= passing,
            "rank": rank,
            "totalStudents": roster_size or len(others),
            "topperScore": topper.score,
            "topperPercentage": topper.percentage,
            "correctCount": correct,
            "incorrectCount": incorrect,
            "unansweredCount": len(review) - correct - incorrect,
            "leaderboard": leaderboard,
        },
        "questionReview": review,
        "topicAnalysis": _topic_analysis(review),
    }


# ── Student dashboard ────────────────────────────────────────

def list_student_tests(db: Session, student: Student, batch: Optional[str] = None, now=None) -> dict:
    """Deployed tests for the student's cohorts, grouped by availability."""
    now = now or utcnow()
    cohorts = student.cohort_list
    batch_filter = [batch] if batch and batch in cohorts else cohorts

    groups = {"available": [], "upcoming": [], "completed": [], "expired": []}
    tests = deployed_tests_for(db, batch_filter)
    if not tests:
        return groups

    attempts = db.query(TestAttempt).filter(
        TestAttempt.student_phone == student.phone,
        TestAttempt.test_id.in_([t.id for t in tests])
    ).all()
    attempt_map = {a.test_id: a for a in attempts}

    for test in tests:
        attempt = attempt_map.get(test.id)
        hidden = results_pending(test, now)
        info = {
            "id": str(test.id),
            "title": test.title,
            "description": test.description,
            "totalMarks": test.total_marks,
            "questionCount": len(test.questions_list),
            "durationMinutes": test.duration_minutes,
            "startTime": isoformat(test.start_time),
            "endTime": isoformat(test.end_time),
            "config": test.config_dict,
            "attemptStatus": attempt.status if attempt is not None else "not_started",
            "score": None if hidden or attempt is None else attempt.score,
            "percentage": None if hidden or attempt is None else attempt.percentage,
            "submittedAt": isoformat(attempt.submitted_at) if attempt is not None else None,
            "resultsPending": hidden,
        }

        if attempt is not None and attempt.status == COMPLETED:
            groups["completed"].append(info)
        elif test.start_time and now < test.start_time:
            groups["upcoming"].append(info)
        elif attempt is not None and attempt.status == IN_PROGRESS:
            # started before the window closed: still submittable
            groups["available"].append(info)
        elif test.end_time and now > test.end_time:
            groups["expired"].append(info)
        else:
            groups["available"].append(info)

    return groups
