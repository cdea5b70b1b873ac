"""
Datetime utility functions.
Venue-local time handling for departure times and the nightly queue reset.
"""

import os
import re
from datetime import datetime
from typing import Optional, Tuple
import pytz
from dotenv import load_dotenv

load_dotenv()

VENUE_TIMEZONE = os.getenv("VENUE_TIMEZONE", "Asia/Seoul")

_HHMM_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def get_venue_timezone():
    """Return the pytz timezone of the venue, falling back to UTC on a bad name."""
    try:
        return pytz.timezone(VENUE_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        return pytz.UTC


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes and convert aware ones to UTC.

    SQLite hands back naive values for timezone-aware columns, PostgreSQL
    does not; everything downstream compares aware datetimes.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def parse_hhmm(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """
    Parse an "HH:MM" string into an (hour, minute) tuple.

    Returns None for anything that is not a valid 24h clock time.
    """
    if not isinstance(value, str):
        return None
    match = _HHMM_PATTERN.match(value.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def venue_now(now: Optional[datetime] = None) -> datetime:
    """Current time (or the given instant) expressed in the venue timezone."""
    now = ensure_utc(now) if now is not None else utcnow()
    return now.astimezone(get_venue_timezone())
