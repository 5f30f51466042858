"""
Attempt service - runs lifecycle transitions against the database.

Every operation follows the same pipeline:
1. Load the test and the student's attempt
2. Gate through the Access Resolver
3. Ask services.lifecycle for the transition
4. Perform its effect (create, merge, grade, ...) and commit

Writes are serialized per attempt. Counters use a single atomic UPDATE;
all other writes go through the ORM ``version`` compare-and-set, so when two
transitions race only one commits and the other observes the result.
"""

from datetime import timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from exam_engine.config import DEFAULT_DURATION_MINUTES, DEFAULT_PASSING_PERCENTAGE, MAX_RESUMES
from exam_engine.errors import InvalidState, NotFound
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.attempt import TestAttempt, IN_PROGRESS, COMPLETED
from exam_engine.models.online_test import OnlineTest
from exam_engine.models.student import Student, normalize_phone
from exam_engine.services import lifecycle
from exam_engine.services.access import matching_cohorts, require_access
from exam_engine.services.grading import GradeResult, grade_attempt, served_total_marks
from exam_engine.services.lifecycle import AttemptStatus, Effect
from exam_engine.services.selection import (
    derive_duration_minutes, new_rng, preview_questions, select_questions, snapshot_questions
)
from exam_engine.timeutil import elapsed_ms, isoformat, utcnow

logger = get_logger("attempts")

AUTO_SUBMIT_MESSAGE = "Maximum resume limit exceeded. Test has been automatically submitted."


# ── Lookups ──────────────────────────────────────────────────

def load_test(db: Session, test_id: str) -> Optional[OnlineTest]:
    return db.query(OnlineTest).filter(OnlineTest.id == test_id).first()


def load_attempt(db: Session, test_id: str, phone: str) -> Optional[TestAttempt]:
    return db.query(TestAttempt).filter(
        TestAttempt.test_id == test_id,
        TestAttempt.student_phone == normalize_phone(phone)
    ).first()


def _context(test_id: str, phone: str) -> dict:
    return {"test_id": str(test_id), "student_phone": phone}


def passing_percentage(test: OnlineTest) -> float:
    return test.config_dict.get("passingPercentage") or DEFAULT_PASSING_PERCENTAGE


def results_pending(test: OnlineTest, now) -> bool:
    """Results stay hidden until the window closes unless shown immediately."""
    if test.config_dict.get("showResultsImmediately", True):
        return False
    return test.end_time is None or now < test.end_time


# ── Serialization ────────────────────────────────────────────

def serialize_attempt(attempt: TestAttempt, pending: bool = False) -> dict:
    """
    Student-safe attempt view; the snapshot itself is never included.

    Grading fields are only exposed on a completed attempt whose results
    are released.
    """
    if attempt.is_completed and not pending:
        answers = attempt.answers_list
    else:
        answers = [
            {"questionId": a.get("questionId"), "answer": a.get("answer"), "timeTaken": a.get("timeTaken", 0)}
            for a in attempt.answers_list
        ]
    return {
        "id": str(attempt.id),
        "testId": str(attempt.test_id),
        "status": attempt.status,
        "startedAt": isoformat(attempt.started_at),
        "submittedAt": isoformat(attempt.submitted_at),
        "answers": answers,
        "timeSpent": attempt.time_spent,
        "resumeCount": attempt.resume_count,
        "warningCount": attempt.warning_count or 0,
        "terminationReason": attempt.termination_reason,
    }


def _test_payload(test: OnlineTest, questions: list, served: Optional[list]) -> dict:
    config = test.config_dict
    if served is not None:
        total_marks = served_total_marks(served)
        duration = derive_duration_minutes(served, config, test.duration_minutes)
    else:
        total_marks = test.total_marks
        duration = test.duration_minutes
    return {
        "id": str(test.id),
        "title": test.title,
        "description": test.description,
        "totalMarks": total_marks,
        "durationMinutes": duration,
        "startTime": isoformat(test.start_time),
        "endTime": isoformat(test.end_time),
        "config": config,
        "questions": questions,
    }


def _auto_submitted_payload(attempt: TestAttempt) -> dict:
    return {
        "error": AUTO_SUBMIT_MESSAGE,
        "status": COMPLETED,
        "redirect": True,
        "terminationReason": attempt.termination_reason,
    }


# ── Shared write helpers ─────────────────────────────────────

def _commit(db: Session, attempt: TestAttempt, action: str):
    """
    Commit an ORM change to an attempt.

    A StaleDataError means another transition on the same attempt won the
    race; the caller sees that transition's outcome as an invalid state.
    """
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        db.refresh(attempt)
        log_with_context(logger, "WARNING", "Concurrent {} lost the race".format(action),
                         context=_context(attempt.test_id, attempt.student_phone),
                         extra_data={"status": attempt.status})
        if attempt.status == COMPLETED:
            raise InvalidState("Test has already been submitted", status_code=409)
        raise InvalidState("Attempt was modified concurrently, please retry", status_code=409)


def _finalize(attempt: TestAttempt, test: OnlineTest, raw_answers: list, now,
              termination_reason: Optional[str], time_spent: Optional[int] = None) -> GradeResult:
    """Grade against the attempt's snapshot and mark it completed (not committed)."""
    result = grade_attempt(
        attempt.questions_list, raw_answers, passing_percentage(test),
        context=_context(test.id, attempt.student_phone)
    )
    attempt.answers_list = result.answer_dicts
    attempt.score = result.score
    attempt.percentage = result.percentage
    attempt.time_spent = time_spent if time_spent is not None else (
        attempt.time_spent or elapsed_ms(attempt.started_at, now))
    attempt.status = COMPLETED
    attempt.submitted_at = now
    if termination_reason:
        attempt.termination_reason = termination_reason
    return result


def _increment_resume(db: Session, attempt: TestAttempt) -> int:
    """Atomically count one re-entry; returns the new resume count."""
    stmt = (
        update(TestAttempt)
        .where(TestAttempt.id == attempt.id, TestAttempt.status == IN_PROGRESS)
        .values(resume_count=TestAttempt.resume_count + 1, version=TestAttempt.version + 1)
        .returning(TestAttempt.resume_count)
        .execution_options(synchronize_session=False)
    )
    new_count = db.execute(stmt).scalar()
    db.commit()
    db.refresh(attempt)
    if new_count is None:
        # completed by a concurrent transition between load and update
        raise InvalidState("You have already completed this test")
    return new_count


# ── Student operations ───────────────────────────────────────

def view_test(db: Session, test_id: str, student: Student, now=None, rng=None) -> dict:
    """
    Stripped test payload plus the student's attempt, if any.

    With an attempt the snapshot is served in stored order; without one the
    live pool is previewed (shuffled only when configured, never persisted).
    This is a read: it does not count as a resume.
    """
    now = now or utcnow()
    test = load_test(db, test_id)
    attempt = load_attempt(db, test_id, student.phone)
    require_access(test, student, now, attempt is not None)

    if attempt is not None:
        snapshot = attempt.questions_list
        questions = snapshot_questions(snapshot)
        payload = _test_payload(test, questions, snapshot)
    else:
        questions = preview_questions(test.questions_list, test.config_dict, rng)
        payload = _test_payload(test, questions, None)

    serialized = None
    if attempt is not None:
        serialized = serialize_attempt(attempt, pending=results_pending(test, now))
    return {"test": payload, "attempt": serialized}


def start_attempt(db: Session, test_id: str, student: Student, now=None, rng=None) -> dict:
    """
    Start a new attempt or re-enter the current one.

    Returns a payload whose ``created`` flag tells the caller whether an
    attempt was created; ``redirect`` is set when this re-entry exceeded the
    resume limit and the attempt was auto-submitted.
    """
    now = now or utcnow()
    test = load_test(db, test_id)
    attempt = load_attempt(db, test_id, student.phone)
    require_access(test, student, now, attempt is not None)
    context = _context(test_id, student.phone)

    status = AttemptStatus.of(attempt)
    if status is AttemptStatus.IN_PROGRESS:
        return _resume(db, test, attempt, now)

    lifecycle.on_start(status)

    if test.end_time and now > test.end_time:
        raise InvalidState("Test window has closed")

    snapshot = select_questions(test.questions_list, test.config_dict, rng or new_rng())
    cohorts = matching_cohorts(test, student)
    attempt = TestAttempt(
        test_id=test.id,
        student_phone=student.phone,
        student_name=student.name or "Unknown",
        batch_name=cohorts[0] if cohorts else "",
        status=IN_PROGRESS,
        started_at=now,
        answers="[]",
        score=0,
        percentage=0,
        time_spent=0,
        resume_count=0,
        warning_count=0,
    )
    attempt.questions_list = snapshot
    db.add(attempt)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent start for the same student won; serve its attempt
        db.rollback()
        existing = load_attempt(db, test_id, student.phone)
        if existing is None:
            raise
        log_with_context(logger, "INFO", "Duplicate start collapsed onto existing attempt",
                         context=context)
        if existing.is_completed:
            raise InvalidState("You have already completed this test")
        return {
            "created": False,
            "attempt": serialize_attempt(existing),
            "questions": snapshot_questions(existing.questions_list),
            "message": "Resuming existing attempt",
        }
    db.refresh(attempt)

    log_with_context(logger, "INFO", "Attempt started with {} question(s)".format(len(snapshot)),
                     context={**context, "attempt_id": str(attempt.id)},
                     extra_data={"batch": attempt.batch_name,
                                 "served_total_marks": served_total_marks(snapshot)})

    return {
        "created": True,
        "attempt": serialize_attempt(attempt),
        "questions": snapshot_questions(snapshot),
        "message": "Test started successfully",
    }


def _resume(db: Session, test: OnlineTest, attempt: TestAttempt, now) -> dict:
    context = _context(test.id, attempt.student_phone)
    resume_count = _increment_resume(db, attempt)
    transition = lifecycle.on_resume(AttemptStatus.of(attempt), resume_count, MAX_RESUMES)

    if transition.effect is Effect.GRADE_AND_TERMINATE:
        _finalize(attempt, test, attempt.answers_list, now, transition.termination_reason)
        try:
            _commit(db, attempt, "resume auto-submit")
        except InvalidState:
            if not attempt.is_completed:
                raise
        log_with_context(logger, "WARNING", "Resume limit exceeded; attempt auto-submitted",
                         context=context,
                         extra_data={"resume_count": resume_count, "score": attempt.score})
        return {"created": False, **_auto_submitted_payload(attempt)}

    log_with_context(logger, "INFO", "Attempt resumed",
                     context=context, extra_data={"resume_count": resume_count})
    return {
        "created": False,
        "attempt": serialize_attempt(attempt),
        "questions": snapshot_questions(attempt.questions_list),
        "message": "Resuming existing attempt",
    }


def autosave_answers(db: Session, test_id: str, student: Student, answers: List[dict],
                     time_spent: Optional[int] = None, now=None) -> dict:
    """Upsert raw answers by questionId without grading."""
    now = now or utcnow()
    test = load_test(db, test_id)
    attempt = load_attempt(db, test_id, student.phone)
    require_access(test, student, now, attempt is not None)
    lifecycle.on_autosave(AttemptStatus.of(attempt))

    merged = {}
    for record in attempt.answers_list:
        merged[str(record.get("questionId"))] = record
    for record in answers:
        question_id = str(record["questionId"])
        previous = merged.get(question_id) or {}
        merged[question_id] = {
            "questionId": question_id,
            "answer": record.get("answer"),
            "isCorrect": False,
            "marksAwarded": 0,
            "timeTaken": record.get("timeTaken") or previous.get("timeTaken") or 0,
        }

    attempt.answers_list = list(merged.values())
    if time_spent:
        attempt.time_spent = time_spent
    _commit(db, attempt, "autosave")

    log_with_context(logger, "DEBUG", "Answers autosaved",
                     context=_context(test_id, student.phone),
                     extra_data={"saved": len(answers), "total_saved": len(merged)})
    return {"success": True, "savedCount": len(answers)}


def submit_attempt(db: Session, test_id: str, student: Student, answers: List[dict],
                   time_spent: Optional[int] = None, warning_count: Optional[int] = None,
                   termination_reason: Optional[str] = None, now=None) -> dict:
    """
    Grade and complete the student's attempt.

    The client's terminationReason is advisory. Its timeSpent is capped at
    the server-observed elapsed time, and a submit arriving after the window
    closed without a reason is recorded as a time expiry.
    """
    now = now or utcnow()
    test = load_test(db, test_id)
    attempt = load_attempt(db, test_id, student.phone)
    require_access(test, student, now, attempt is not None)

    reason = termination_reason
    if not reason and test.end_time and now > test.end_time:
        reason = lifecycle.TIME_EXPIRED_REASON
    transition = lifecycle.on_submit(AttemptStatus.of(attempt), reason)

    server_elapsed = elapsed_ms(attempt.started_at, now)
    spent = min(time_spent, server_elapsed) if time_spent else server_elapsed
    if warning_count is not None:
        attempt.warning_count = max(attempt.warning_count or 0, warning_count)

    result = _finalize(attempt, test, answers, now, transition.termination_reason, spent)
    _commit(db, attempt, "submit")

    log_with_context(logger, "INFO", "Attempt submitted",
                     context={**_context(test_id, student.phone), "attempt_id": str(attempt.id)},
                     extra_data={
                         "score": result.score,
                         "percentage": result.percentage,
                         "termination_reason": attempt.termination_reason,
                         "client_time_spent": time_spent,
                         "server_elapsed_ms": server_elapsed,
                     })

    pending = results_pending(test, now)
    return {
        "message": "Test submitted successfully",
        "score": None if pending else result.score,
        "totalMarks": None if pending else result.total_marks,
        "percentage": None if pending else result.percentage,
        "passed": None if pending else result.passed,
        "resultsPending": pending,
    }


# ── Administrative operations ────────────────────────────────

def load_owned_test(db: Session, test_id: str, admin_email: str) -> OnlineTest:
    test = db.query(OnlineTest).filter(
        OnlineTest.id == test_id,
        OnlineTest.created_by == admin_email
    ).first()
    if test is None:
        raise NotFound("Test not found")
    return test


def is_expired(test: OnlineTest, attempt: TestAttempt, now) -> bool:
    """Past the deployment end time, or past startedAt + duration."""
    if test.end_time and now > test.end_time:
        return True
    duration = timedelta(minutes=test.duration_minutes or DEFAULT_DURATION_MINUTES)
    return now - attempt.started_at > duration


def force_complete(db: Session, test: OnlineTest, now=None) -> int:
    """
    Grade and complete every expired in-progress attempt of a test.

    Uses each attempt's last autosaved answers. Attempts that a concurrent
    submit finished first are skipped. Returns the number completed.
    """
    now = now or utcnow()
    stuck = db.query(TestAttempt).filter(
        TestAttempt.test_id == test.id,
        TestAttempt.status == IN_PROGRESS
    ).all()

    completed_count = 0
    for attempt in stuck:
        if not is_expired(test, attempt, now):
            continue
        transition = lifecycle.on_force_complete(AttemptStatus.of(attempt))
        _finalize(attempt, test, attempt.answers_list, now, transition.termination_reason)
        try:
            _commit(db, attempt, "force-complete")
        except InvalidState:
            continue
        completed_count += 1

    log_with_context(logger, "INFO", "Force-completed {} expired attempt(s)".format(completed_count),
                     context={"test_id": str(test.id)},
                     extra_data={"in_progress_seen": len(stuck), "completed": completed_count})
    return completed_count


def reassign_students(db: Session, test: OnlineTest, phones: List[str]) -> int:
    """Delete the attempts of the given students so they can start again."""
    normalized = [normalize_phone(p) for p in phones if normalize_phone(p)]
    attempts = db.query(TestAttempt).filter(
        TestAttempt.test_id == test.id,
        TestAttempt.student_phone.in_(normalized)
    ).all()

    for attempt in attempts:
        lifecycle.on_reassign(AttemptStatus.of(attempt))
        db.delete(attempt)
    db.commit()

    log_with_context(logger, "INFO", "Reassigned {} attempt(s)".format(len(attempts)),
                     context={"test_id": str(test.id)},
                     extra_data={"requested": len(phones), "deleted": len(attempts)})
    return len(attempts)
