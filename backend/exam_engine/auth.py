"""
Request identity for the two audiences of the API.

Students authenticate with a bearer JWT whose ``phoneNumber`` (or ``sub``)
claim is their phone number. Administrators are identified by the
``X-User-Email`` header set by the upstream admin gateway.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, Header
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from exam_engine.config import JWT_ALGORITHM, JWT_SECRET
from exam_engine.database import get_db
from exam_engine.errors import Unauthenticated
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.student import Student, normalize_phone

logger = get_logger("access")


def create_student_token(phone: str, expires_delta: Optional[timedelta] = None,
                         extra_claims: Optional[Dict[str, Any]] = None) -> str:
    """Mint a student JWT (used by the login service and by tests)."""
    now = datetime.now()
    payload = {
        "sub": phone,
        "phoneNumber": phone,
        "iat": now,
        "exp": now + (expires_delta or timedelta(days=7)),
        **(extra_claims or {})
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_student_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None


def get_current_student(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> Student:
    """Resolve the bearer token to a roster student or raise Unauthenticated."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthenticated("Unauthorized")

    payload = decode_student_token(authorization[7:].strip())
    if payload is None:
        log_with_context(logger, "WARNING", "Rejected invalid student token")
        raise Unauthenticated("Invalid token")

    phone = normalize_phone(payload.get("phoneNumber") or payload.get("sub"))
    if not phone:
        raise Unauthenticated("Invalid token")

    student = db.query(Student).filter(Student.phone == phone).first()
    if student is None:
        log_with_context(logger, "WARNING", "Token for unknown student",
                         context={"student_phone": phone})
        raise Unauthenticated("Student not found")
    return student


def require_admin(x_user_email: Optional[str] = Header(None)) -> str:
    """The calling administrator's email."""
    if not x_user_email or not x_user_email.strip():
        raise Unauthenticated("Unauthorized")
    return x_user_email.strip()
