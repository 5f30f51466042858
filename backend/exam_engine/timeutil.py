"""
Timestamp helpers.

All datetimes are stored naive UTC (SQLite has no timezone support).
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from exam_engine.config import DEPLOYMENT_UTC_OFFSET_MINUTES


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(ts_str: str) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp into a naive UTC datetime.

    Timestamps without an offset are read in the deployment timezone
    (DEPLOYMENT_UTC_OFFSET_MINUTES). Returns None if parsing fails.
    """
    if not ts_str:
        return None
    if isinstance(ts_str, datetime):
        dt = ts_str
    else:
        value = str(ts_str).strip()
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone(timedelta(minutes=DEPLOYMENT_UTC_OFFSET_MINUTES)))
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    """Naive UTC datetime -> ISO 8601 string with a Z suffix."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat() + "Z"


def elapsed_ms(since: Optional[datetime], now: datetime) -> int:
    if since is None:
        return 0
    return max(0, int((now - since).total_seconds() * 1000))
