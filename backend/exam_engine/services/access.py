"""
Access Resolver - decides whether a student may see or start a deployed test.

Resolution order:
1. NOT_FOUND: test missing or not deployed
2. ACCESS_DENIED: no shared cohort, or not on a configured allow-list
3. NOT_YET_OPEN: window not started and no attempt exists yet
4. OK
"""

import enum
from datetime import datetime

from exam_engine.errors import AccessDenied, NotFound, NotYetOpen
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.online_test import OnlineTest
from exam_engine.models.student import Student, normalize_phone

logger = get_logger("access")


class AccessDecision(str, enum.Enum):
    NOT_FOUND = "not-found"
    NOT_YET_OPEN = "not-yet-open"
    ACCESS_DENIED = "access-denied"
    OK = "ok"


def matching_cohorts(test: OnlineTest, student: Student) -> list:
    """The student's cohorts that the test is deployed to, in the student's order."""
    targets = set(test.batches)
    return [c for c in student.cohort_list if c in targets]


def is_allow_listed(test: OnlineTest, phone: str) -> bool:
    """True when no allow-list is configured or the phone is on it."""
    allowed = test.allowed_students
    if not allowed:
        return True
    phones = {normalize_phone(s.get("phoneNumber")) for s in allowed if s.get("phoneNumber")}
    return normalize_phone(phone) in phones


def resolve_access(test: OnlineTest, student: Student, now: datetime,
                   has_attempt: bool) -> AccessDecision:
    """Pure access decision; see module docstring for precedence."""
    if test is None or test.status != "deployed":
        return AccessDecision.NOT_FOUND

    if not matching_cohorts(test, student) or not is_allow_listed(test, student.phone):
        return AccessDecision.ACCESS_DENIED

    if not has_attempt and test.start_time and now < test.start_time:
        return AccessDecision.NOT_YET_OPEN

    return AccessDecision.OK


def require_access(test: OnlineTest, student: Student, now: datetime,
                   has_attempt: bool) -> OnlineTest:
    """Resolve access and raise the matching domain error unless OK."""
    decision = resolve_access(test, student, now, has_attempt)
    if decision is AccessDecision.OK:
        return test

    log_with_context(logger, "INFO", "Access refused: {}".format(decision.value),
                     context={
                         "test_id": test.id if test is not None else None,
                         "student_phone": student.phone,
                     })

    if decision is AccessDecision.NOT_FOUND:
        raise NotFound("Test not found")
    if decision is AccessDecision.ACCESS_DENIED:
        raise AccessDenied("You do not have access to this test")
    raise NotYetOpen("Test has not started yet",
                     startsAt=test.start_time.isoformat() + "Z")
