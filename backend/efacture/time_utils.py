from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, has_app_context


CLOCK_EXTENSION_KEY = "efacture.clock"

# Accepted calendar-date spellings, tried in order (ISO first).
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d")


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock:
    """Source of 'now' for services. Swapped out in tests via app.extensions."""

    def now(self) -> datetime:
        return utcnow()


_SYSTEM_CLOCK = Clock()


def get_clock() -> Clock:
    if has_app_context():
        return current_app.extensions.get(CLOCK_EXTENSION_KEY, _SYSTEM_CLOCK)
    return _SYSTEM_CLOCK


def local_today(tz_name: str | None, clock: Clock | None = None) -> date:
    """
    Calendar date 'today' in the tenant's timezone.

    Unknown or empty timezone names fall back to UTC.
    """
    clock = clock or get_clock()
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        tz = timezone.utc
    return clock.now().replace(tzinfo=timezone.utc).astimezone(tz).date()


def parse_calendar_date(value) -> Optional[date]:
    """
    Parse a calendar date from a date, datetime or string.

    - None / "" -> None
    - datetime -> its date part
    - strings in DATE_FORMATS, or ISO-8601 datetimes -> date
    Raises ValueError for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    parsed = parse_iso_datetime(s)
    if parsed is None:
        raise ValueError(f"Invalid date: {value!r}")
    return parsed.date()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
