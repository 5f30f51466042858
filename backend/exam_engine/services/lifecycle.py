"""
Attempt lifecycle - the attempt state machine as pure transition functions.

States: absent -> in_progress -> completed. ``completed`` is terminal; a
terminated attempt is a completed attempt with a termination reason.

Each event has one function that takes the current state (plus whatever the
event needs) and returns a Transition describing the next state and the
side effect the caller must perform. Illegal events raise InvalidState or
NotFound; callers never check status strings themselves.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from exam_engine.errors import InvalidState, NotFound

RESUME_LIMIT_REASON = "exceeded resume limit"
WARNING_LIMIT_REASON = "exceeded warning limit"
SERVER_EXPIRED_REASON = "server auto expired"
TIME_EXPIRED_REASON = "time expired"


class AttemptStatus(str, enum.Enum):
    ABSENT = "absent"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def of(cls, attempt) -> "AttemptStatus":
        if attempt is None:
            return cls.ABSENT
        return cls(attempt.status)


class Effect(str, enum.Enum):
    CREATE = "create"                            # snapshot questions and insert
    PERSIST = "persist"                          # write counters only
    MERGE = "merge"                              # upsert answers, no grading
    GRADE = "grade"                              # grade and complete
    GRADE_AND_TERMINATE = "grade_and_terminate"  # grade saved answers, complete with reason
    INCREMENT = "increment"                      # bump the warning counter
    DELETE = "delete"                            # remove the attempt record


@dataclass(frozen=True)
class Transition:
    next_status: AttemptStatus
    effect: Effect
    termination_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.next_status is AttemptStatus.COMPLETED


def _require_in_progress(status: AttemptStatus, action: str):
    if status is AttemptStatus.ABSENT:
        raise NotFound("No active attempt")
    if status is AttemptStatus.COMPLETED:
        raise InvalidState("Cannot {} a completed test".format(action))


def on_start(status: AttemptStatus) -> Transition:
    """First entry. An in-progress attempt is a resume, handled by on_resume."""
    if status is AttemptStatus.COMPLETED:
        raise InvalidState("You have already completed this test")
    if status is AttemptStatus.IN_PROGRESS:
        raise InvalidState("Attempt already in progress")
    return Transition(AttemptStatus.IN_PROGRESS, Effect.CREATE)


def on_resume(status: AttemptStatus, resume_count: int, max_resumes: int) -> Transition:
    """
    Re-entry into an in-progress attempt.

    ``resume_count`` is the value AFTER this re-entry was counted. Once it
    exceeds ``max_resumes`` the saved answers are graded and the attempt is
    terminated.
    """
    _require_in_progress(status, "resume")
    if resume_count > max_resumes:
        return Transition(AttemptStatus.COMPLETED, Effect.GRADE_AND_TERMINATE, RESUME_LIMIT_REASON)
    return Transition(AttemptStatus.IN_PROGRESS, Effect.PERSIST)


def on_autosave(status: AttemptStatus) -> Transition:
    _require_in_progress(status, "save answers for")
    return Transition(AttemptStatus.IN_PROGRESS, Effect.MERGE)


def on_submit(status: AttemptStatus, termination_reason: Optional[str] = None) -> Transition:
    """Final submission; a second submit on a completed attempt is rejected."""
    if status is AttemptStatus.COMPLETED:
        raise InvalidState("Test has already been submitted")
    _require_in_progress(status, "submit")
    return Transition(AttemptStatus.COMPLETED, Effect.GRADE, termination_reason or None)


def on_force_complete(status: AttemptStatus) -> Transition:
    if status is not AttemptStatus.IN_PROGRESS:
        raise InvalidState("Only in-progress attempts can be force-completed")
    return Transition(AttemptStatus.COMPLETED, Effect.GRADE, SERVER_EXPIRED_REASON)


def on_warning(status: AttemptStatus) -> Transition:
    _require_in_progress(status, "record a warning for")
    return Transition(AttemptStatus.IN_PROGRESS, Effect.INCREMENT)


def on_reassign(status: AttemptStatus) -> Transition:
    """Administrative delete so the student can start afresh."""
    if status is AttemptStatus.ABSENT:
        raise NotFound("No attempt to reassign")
    return Transition(AttemptStatus.ABSENT, Effect.DELETE)
