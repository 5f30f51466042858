"""
Shared fixtures: an isolated in-memory database per test, a TestClient wired
to it, a seeded roster and a factory for deployed tests.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exam_engine.auth import create_student_token
from exam_engine.database import Base, get_db
from exam_engine.main import app
from exam_engine.models import OnlineTest, Student, TestAttempt
from exam_engine.models.attempt import COMPLETED
from exam_engine.timeutil import utcnow

ADMIN_EMAIL = "admin@example.com"

ASHA = "919876543210"
RAHUL = "919876543211"
DIVYA = "919876543212"
OUTSIDER = "919876543219"


def sample_questions():
    """Pool worth 15 marks: mcq 4, msq 4, range 2, text 2, broad 3."""
    return [
        {"id": "q1", "type": "mcq", "text": "Pick C", "options": ["A", "B", "C", "D"],
         "correctIndices": [2], "marks": 4, "negativeMarks": 1, "topic": "Mechanics",
         "solutionText": "C is correct"},
        {"id": "q2", "type": "msq", "text": "Pick A and C", "options": ["A", "B", "C", "D"],
         "correctIndices": [0, 2], "marks": 4, "negativeMarks": 2, "topic": "Mechanics"},
        {"id": "q3", "type": "fillblank", "text": "A number from 10 to 20",
         "isNumberRange": True, "numberRangeMin": 10, "numberRangeMax": 20, "marks": 2, "topic": "Numbers"},
        {"id": "q4", "type": "fillblank", "text": "Unit of force", "fillBlankAnswer": "Newton",
         "marks": 2, "negativeMarks": 1, "topic": "Units"},
        {"id": "q5", "type": "broad", "text": "Explain inertia", "marks": 3, "topic": "Mechanics"},
    ]


ALL_CORRECT = [
    {"questionId": "q1", "answer": 2},
    {"questionId": "q2", "answer": [2, 0]},
    {"questionId": "q3", "answer": "15 "},
    {"questionId": "q4", "answer": "  newton "},
]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def roster(db_session):
    """Four students: two in JEE-A, two in JEE-B (one in both), one elsewhere."""
    students = {
        ASHA: Student(phone=ASHA, name="Asha", cohorts='["JEE-A"]'),
        RAHUL: Student(phone=RAHUL, name="Rahul", cohorts='["JEE-A", "JEE-B"]'),
        DIVYA: Student(phone=DIVYA, name="Divya", cohorts='["JEE-B"]'),
        OUTSIDER: Student(phone=OUTSIDER, name="Omar", cohorts='["NEET-X"]'),
    }
    db_session.add_all(students.values())
    db_session.commit()
    return students


@pytest.fixture
def make_test(db_session):
    """Factory for tests deployed relative to the current time."""
    def _make(questions=None, config=None, batches=("JEE-A",), students=None,
              starts_in=timedelta(minutes=-10), ends_in=timedelta(hours=1),
              duration_minutes=30, status="deployed", created_by=ADMIN_EMAIL,
              title="Weekly Test"):
        now = utcnow()
        test = OnlineTest(title=title, created_by=created_by, status=status)
        test.questions_list = sample_questions() if questions is None else questions
        test.config_dict = config or {}
        test.batches = list(batches)
        test.allowed_students = students or []
        test.start_time = now + starts_in if starts_in is not None else None
        test.end_time = now + ends_in if ends_in is not None else None
        test.duration_minutes = duration_minutes
        db_session.add(test)
        db_session.commit()
        db_session.refresh(test)
        return test
    return _make


@pytest.fixture
def make_attempt(db_session):
    """Factory for attempts written straight to the database."""
    def _make(test, student, status=COMPLETED, score=0, percentage=0, answers=None,
              started_ago=timedelta(minutes=20), submitted_ago=timedelta(0),
              time_spent=600000, batch=None):
        now = utcnow()
        attempt = TestAttempt(
            test_id=test.id,
            student_phone=student.phone,
            student_name=student.name,
            batch_name=batch or student.cohort_list[0],
            status=status,
            started_at=now - started_ago,
            submitted_at=now - submitted_ago if status == COMPLETED else None,
            score=score,
            percentage=percentage,
            time_spent=time_spent,
            resume_count=0,
            warning_count=0,
        )
        attempt.questions_list = test.questions_list
        attempt.answers_list = answers or []
        db_session.add(attempt)
        db_session.commit()
        db_session.refresh(attempt)
        return attempt
    return _make


@pytest.fixture
def student_headers():
    def _headers(phone):
        return {"Authorization": f"Bearer {create_student_token(phone)}"}
    return _headers


@pytest.fixture
def admin_headers():
    return {"X-User-Email": ADMIN_EMAIL}
