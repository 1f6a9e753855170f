"""Wall-clock time helpers shared by templates, bookings and blocks."""

from __future__ import annotations

import re
from datetime import date, datetime, time

from venue_availability.errors import InvalidInput

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def pad_time(value: str | time) -> str:
    """
    Normalise a wall-clock time to ``HH:MM:SS``.

    ``"9:00"``, ``"09:00"`` and ``"09:00:00"`` all become ``"09:00:00"`` so
    that values stored with and without seconds compare equal. ``24:00`` is
    accepted as an end-of-day boundary.
    """
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if not isinstance(value, str):
        raise InvalidInput("Time must be a string in HH:MM[:SS] form", value=value)

    match = _TIME_RE.match(value.strip())
    if match is None:
        raise InvalidInput("Time must be in HH:MM[:SS] form", value=value)

    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if minutes > 59 or seconds > 59 or hours > 24 or (hours == 24 and (minutes or seconds)):
        raise InvalidInput("Time is out of range", value=value)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def day_of_week(value: date) -> int:
    """Weekday number with 0 = Sunday … 6 = Saturday."""
    return value.isoweekday() % 7


def validate_court_id(court_id: object) -> str:
    if not isinstance(court_id, str) or not court_id.strip():
        raise InvalidInput("court_id must be a non-empty string", court_id=court_id)
    return court_id


def validate_date(value: object) -> date:
    # datetime is a date subclass; a time component is not allowed here
    if not isinstance(value, date) or isinstance(value, datetime):
        raise InvalidInput("date must be a calendar date without time", date=value)
    return value
