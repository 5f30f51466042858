"""
Integrity Monitor - server-side counter for "attention lost" events.

The client reports each time the test tab loses visibility. The count is
persisted with one atomic UPDATE so duplicate or concurrent reports are
each counted exactly once. At WARNING_LIMIT the client is told to
auto-submit; the server does not terminate the attempt itself, the
client's submit (with terminationReason "exceeded warning limit") does.
"""

from sqlalchemy import update
from sqlalchemy.orm import Session

from exam_engine.config import WARNING_LIMIT
from exam_engine.errors import InvalidState
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.attempt import TestAttempt, IN_PROGRESS
from exam_engine.models.student import Student
from exam_engine.services import lifecycle
from exam_engine.services.access import require_access
from exam_engine.services.attempts import load_attempt, load_test
from exam_engine.services.lifecycle import AttemptStatus
from exam_engine.timeutil import utcnow

logger = get_logger("integrity")


def _warning_payload(count: int) -> dict:
    return {
        "success": True,
        "warningCount": count,
        "limit": WARNING_LIMIT,
        "autoSubmit": count >= WARNING_LIMIT,
        "terminationReason": lifecycle.WARNING_LIMIT_REASON if count >= WARNING_LIMIT else None,
    }


def record_warning(db: Session, test_id: str, student: Student, now=None) -> dict:
    """Increment and return the attempt's warning count."""
    now = now or utcnow()
    test = load_test(db, test_id)
    attempt = load_attempt(db, test_id, student.phone)
    require_access(test, student, now, attempt is not None)
    lifecycle.on_warning(AttemptStatus.of(attempt))

    stmt = (
        update(TestAttempt)
        .where(TestAttempt.id == attempt.id, TestAttempt.status == IN_PROGRESS)
        .values(warning_count=TestAttempt.warning_count + 1, version=TestAttempt.version + 1)
        .returning(TestAttempt.warning_count)
        .execution_options(synchronize_session=False)
    )
    count = db.execute(stmt).scalar()
    db.commit()
    if count is None:
        raise InvalidState("Cannot record a warning for a completed test")

    level = "WARNING" if count >= WARNING_LIMIT else "INFO"
    log_with_context(logger, level, "Visibility warning recorded ({}/{})".format(count, WARNING_LIMIT),
                     context={"test_id": str(test_id), "student_phone": student.phone,
                              "attempt_id": str(attempt.id)},
                     extra_data={"warning_count": count})
    return _warning_payload(count)


def current_warnings(db: Session, test_id: str, student: Student, now=None) -> dict:
    """Read-only warning count for a resuming client."""
    now = now or utcnow()
    test = load_test(db, test_id)
    attempt = load_attempt(db, test_id, student.phone)
    require_access(test, student, now, attempt is not None)
    count = attempt.warning_count if attempt is not None else 0
    return {"count": count, **_warning_payload(count)}
