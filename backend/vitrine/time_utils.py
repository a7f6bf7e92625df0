from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

# Every stored timestamp is UTC without tzinfo; SQLite hands them back naive.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 string -> UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" means the last second of that day (UTC); coupon expiry
      dates are entered this way and stay valid through the whole day
    - naive datetimes are taken as UTC, offsets and "Z" are converted
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if len(s) == 10:
        day = datetime.strptime(s, "%Y-%m-%d")
        return day.replace(hour=23, minute=59, second=59)

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return _as_utc_naive(datetime.fromisoformat(s))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a trailing 'Z'."""
    if dt is None:
        return None
    aware = _as_utc_naive(dt).replace(tzinfo=timezone.utc, microsecond=0)
    return aware.isoformat().replace("+00:00", "Z")
