"""
Date and Time utilities

This module handles timestamp normalization, weekday names and the air-time
and release-date parsing shared by the provider adapters.
Centralizes all date parsing logic to maintain consistency across the application.
"""
from datetime import datetime, timezone
import re


DAY_NAMES = {
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
    7: "Sunday",
}

_AIR_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*$")
_YEAR_RE = re.compile(r"^\s*(\d{4})")


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Attach UTC to naive datetimes and convert aware ones to UTC

    SQLite drops tzinfo on round-trip, so values read back from the cache
    table are naive but were written in UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_valid_day(day: object) -> bool:
    """True for integer weekdays 1 (Monday) through 7 (Sunday)"""
    return isinstance(day, int) and not isinstance(day, bool) and 1 <= day <= 7


def day_name(day: int) -> str:
    """English weekday name for 1-7"""
    return DAY_NAMES[day]


def normalize_air_time(value: object) -> str | None:
    """
    Normalize an upstream air time to zero-padded HH:MM

    Returns None when the value is missing or not a valid wall-clock time,
    so callers can drop the entry instead of passing garbage through.
    """
    if not isinstance(value, str):
        return None
    match = _AIR_TIME_RE.match(value)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def parse_year(date_str: object) -> int | None:
    """Extract the year from 'YYYY-MM-DD' style strings"""
    if not isinstance(date_str, str):
        return None
    match = _YEAR_RE.match(date_str)
    return int(match.group(1)) if match else None
