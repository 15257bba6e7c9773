# Overview: Canonical UTC clock, ISO-8601 parsing/serialization and calendar windows.

"""
All datetimes are stored and compared as UTC-naive values. Inputs with an
offset are converted; naive inputs are taken to already be UTC. Output always
carries a trailing 'Z'.

Calendar windows (production day, revenue month, produce expiry) are computed
here so every service slices time the same way.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into a UTC-naive datetime.

    - None / "" -> None
    - "2026-11-02" and "2026-11-02T07:30" are read as UTC
    - "...Z" and "...+01:00" are converted to UTC
    Raises ValueError on anything else.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    parsed = datetime.fromisoformat(s)
    if parsed.tzinfo is None:
        return parsed
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to second precision with a trailing 'Z' (naive = UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def day_bounds(dt: datetime) -> tuple[datetime, datetime]:
    """[start, end) of the UTC calendar day containing dt."""
    start = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def month_start(dt: datetime) -> datetime:
    """Midnight on the first day of dt's calendar month."""
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def expires_at(produced_at: datetime, shelf_life_days: int) -> datetime:
    return produced_at + timedelta(days=shelf_life_days)
