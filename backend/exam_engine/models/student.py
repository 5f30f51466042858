"""
Student model - the roster entry used for cohort membership lookups.

Roster maintenance happens elsewhere; the exam engine only reads it.
"""

import re
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Text, DateTime, String
from exam_engine.database import Base
from exam_engine.models.fields import load_json, dump_json


def normalize_phone(phone: str) -> str:
    """
    Reduce a phone number to its digits.

    Examples:
        "91-7654-321098" -> "917654321098"
        "+91 (765) 432-1098" -> "917654321098"
    """
    if not phone:
        return None
    return re.sub(r'\D', '', str(phone))


class Student(Base):
    """SQLAlchemy model for the students table."""
    __tablename__ = "students"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    phone = Column(Text, nullable=False, unique=True,
                   doc="Digits-only phone number, the student's identity")
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=True)
    cohorts = Column(Text, nullable=False, default="[]",
                     doc="Batch names the student belongs to, as JSON")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def cohort_list(self) -> list:
        return load_json(self.cohorts, [])

    @cohort_list.setter
    def cohort_list(self, value: list):
        self.cohorts = dump_json(list(value or []))

    def __repr__(self):
        return f"<Student(id={self.id}, name='{self.name}', phone='{self.phone}')>"
