"""
Student analytics API route - trend, rank and cohort leaderboard.
"""

import time
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from exam_engine.auth import get_current_student
from exam_engine.database import get_db
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.student import Student
from exam_engine.services.analytics import student_analytics

router = APIRouter()
logger = get_logger("http")


@router.get("/api/student/analytics")
def get_student_analytics(
    batch: Optional[str] = Query(None, description="Restrict to one of the student's batches"),
    student: Student = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    """
    Cross-test analytics for the calling student.

    Ranking:
    1. Average percentage over completed attempts (highest first)
    2. Tie-breaker: earlier first attempt
    3. Tie-breaker: phone number
    """
    start_time = time.time()
    result = student_analytics(db, student, batch)

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO",
        "Student analytics served: rank {} of {}".format(result["batchRank"], result["totalBatchStudents"]),
        context={"student_phone": student.phone},
        extra_data={"duration_ms": round(duration_ms, 2), "batch": batch})
    return result
