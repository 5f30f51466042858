"""
TestAttempt model - one student's attempt at one online test.

Holds the immutable question snapshot served at start, the saved/graded
answers, and the resume and warning counters. Every ORM write is guarded by
the ``version`` column so concurrent transitions on the same attempt cannot
interleave: the loser gets a StaleDataError.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Text, Integer, Float, DateTime, ForeignKey, Index, String, UniqueConstraint
)
from sqlalchemy.orm import relationship
from exam_engine.database import Base
from exam_engine.models.fields import load_json, dump_json

IN_PROGRESS = "in_progress"
COMPLETED = "completed"


class TestAttempt(Base):
    """
    SQLAlchemy model for the test_attempts table.

    Exactly one row per (test_id, student_phone).
    """
    __tablename__ = "test_attempts"
    __test__ = False  # keep pytest from collecting this class

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique attempt identifier")
    test_id = Column(String(36), ForeignKey("online_tests.id"), nullable=False)
    student_phone = Column(Text, nullable=False,
                           doc="Digits-only phone number identifying the student")
    student_name = Column(Text, nullable=False, default="Unknown")
    batch_name = Column(Text, nullable=False, default="",
                        doc="Cohort the student attempted under")
    status = Column(Text, nullable=False, default=IN_PROGRESS,
                    doc="in_progress | completed")
    started_at = Column(DateTime, nullable=False)
    submitted_at = Column(DateTime, nullable=True)
    questions = Column(Text, nullable=False, default="[]",
                       doc="Snapshot of served questions, captured once at start")
    answers = Column(Text, nullable=False, default="[]",
                     doc="[{questionId, answer, isCorrect, marksAwarded, timeTaken}]")
    score = Column(Float, nullable=False, default=0)
    percentage = Column(Integer, nullable=False, default=0)
    time_spent = Column(Integer, nullable=False, default=0, doc="Milliseconds")
    resume_count = Column(Integer, nullable=False, default=0)
    warning_count = Column(Integer, nullable=False, default=0)
    termination_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    test = relationship("OnlineTest", back_populates="attempts")

    __table_args__ = (
        UniqueConstraint("test_id", "student_phone", name="uq_test_attempts_test_student"),
        Index("ix_test_attempts_test_status", "test_id", "status"),
        Index("ix_test_attempts_student_phone", "student_phone"),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def questions_list(self) -> list:
        return load_json(self.questions, [])

    @questions_list.setter
    def questions_list(self, value: list):
        self.questions = dump_json(value)

    @property
    def answers_list(self) -> list:
        return load_json(self.answers, [])

    @answers_list.setter
    def answers_list(self, value: list):
        self.answers = dump_json(value)

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    def __repr__(self):
        return (f"<TestAttempt(id={self.id}, test={self.test_id}, "
                f"student={self.student_phone}, status='{self.status}')>")
