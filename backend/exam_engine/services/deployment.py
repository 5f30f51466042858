"""
Deployment - places a test into a time window for target cohorts.

Also reopens the window for students who missed it. Both operations are
administrative and only touch the test definition, never attempts.
"""

from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from exam_engine.errors import ValidationFailed
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.online_test import OnlineTest
from exam_engine.models.student import normalize_phone
from exam_engine.services.selection import derive_duration_minutes
from exam_engine.timeutil import parse_timestamp

logger = get_logger("db")


def deploy_test(db: Session, test: OnlineTest, batches: Optional[List[str]],
                students: Optional[List[dict]], start_time: str,
                end_time: Optional[str] = None,
                duration_minutes: Optional[int] = None) -> OnlineTest:
    """
    Deploy (or redeploy) a test.

    An already-deployed test keeps its cohorts when none are given. With
    per-question timing enabled the duration is derived from the pool;
    a missing end time is start + duration.
    """
    final_batches = list(batches or [])
    if test.status == "deployed" and not final_batches:
        final_batches = test.batches
    if not final_batches:
        raise ValidationFailed("At least one batch must be selected")

    start = parse_timestamp(start_time)
    if start is None:
        raise ValidationFailed("A valid start time is required")

    duration = derive_duration_minutes(test.questions_list, test.config_dict, duration_minutes)

    if end_time:
        end = parse_timestamp(end_time)
        if end is None:
            raise ValidationFailed("Invalid end time")
    elif duration:
        end = start + timedelta(minutes=duration)
    else:
        raise ValidationFailed("Either an end time or a duration is required")

    if end <= start:
        raise ValidationFailed("End time must be after start time")

    allow_list = []
    for s in students or []:
        phone = normalize_phone(s.get("phoneNumber"))
        if phone:
            allow_list.append({**s, "phoneNumber": phone})

    test.batches = final_batches
    test.allowed_students = allow_list
    test.start_time = start
    test.end_time = end
    test.duration_minutes = duration
    test.status = "deployed"
    db.commit()
    db.refresh(test)

    log_with_context(logger, "INFO", "Test deployed to {} batch(es)".format(len(final_batches)),
                     context={"test_id": str(test.id)},
                     extra_data={
                         "batches": final_batches,
                         "allow_list": len(allow_list),
                         "start_time": start.isoformat(),
                         "end_time": end.isoformat(),
                         "duration_minutes": duration,
                     })
    return test


def reopen_window(db: Session, test: OnlineTest, new_start: str, new_end: str) -> OnlineTest:
    """Move the deployment window and set the test back to deployed."""
    if not new_start or not new_end:
        raise ValidationFailed("Start time and end time are required")

    start = parse_timestamp(new_start)
    end = parse_timestamp(new_end)
    if start is None or end is None:
        raise ValidationFailed("Invalid date format")
    if end <= start:
        raise ValidationFailed("End time must be after start time")

    test.start_time = start
    test.end_time = end
    test.status = "deployed"
    db.commit()
    db.refresh(test)

    log_with_context(logger, "INFO", "Deployment window reopened for missed students",
                     context={"test_id": str(test.id)},
                     extra_data={"start_time": start.isoformat(), "end_time": end.isoformat()})
    return test
