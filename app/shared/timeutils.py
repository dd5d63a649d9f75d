"""Clinic clock and human time-of-day helpers"""

import re
from datetime import date, datetime, timedelta
from enum import IntEnum
from typing import Optional
from zoneinfo import ZoneInfo

from ..config import CLINIC_TIMEZONE

MINUTES_PER_DAY = 24 * 60

# Auto-join tolerates client/server timezone skew by one calendar day either way
DATE_SKEW_TOLERANCE_DAYS = 1

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp][Mm])?\s*$")
_DATE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")


class Weekday(IntEnum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return cls(day.weekday())

    @classmethod
    def from_name(cls, name: str) -> "Weekday":
        try:
            return cls[name.strip().upper()]
        except KeyError as e:
            raise ValueError(f"Unknown weekday: {name}") from e

    @property
    def label(self) -> str:
        return self.name.capitalize()


def local_now() -> datetime:
    """Current wall-clock time in the clinic's zone, as a naive datetime"""
    return datetime.now(ZoneInfo(CLINIC_TIMEZONE)).replace(tzinfo=None)


def parse_time_to_minutes(value: str) -> int:
    """
    Parse "9:30 AM", "09:30", "21:30" or "12:00 am" into minutes after midnight.

    Raises:
        ValueError: if the string is not a recognizable time of day
    """
    if not value:
        raise ValueError("Empty time value")
    match = _TIME_RE.match(value)
    if not match:
        raise ValueError(f"Unrecognized time format: {value}")

    hours, minutes, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
    if minutes > 59:
        raise ValueError(f"Invalid minutes in time: {value}")

    if meridiem:
        if not 1 <= hours <= 12:
            raise ValueError(f"Invalid 12-hour time: {value}")
        meridiem = meridiem.upper()
        if meridiem == "PM" and hours != 12:
            hours += 12
        elif meridiem == "AM" and hours == 12:
            hours = 0
    elif hours > 24 or (hours == 24 and minutes):
        raise ValueError(f"Invalid 24-hour time: {value}")

    return hours * 60 + minutes


def minutes_to_time(total_minutes: int) -> str:
    """Format minutes after midnight as "h:mm AM/PM" (wraps past midnight)"""
    total_minutes %= MINUTES_PER_DAY
    hours, minutes = divmod(total_minutes, 60)
    meridiem = "PM" if hours >= 12 else "AM"
    display = hours % 12 or 12
    return f"{display}:{minutes:02d} {meridiem}"


def normalize_time(value: str) -> str:
    return minutes_to_time(parse_time_to_minutes(value))


def parse_date(value: str) -> date:
    """Accept "YYYY-MM-DD" or any ISO string starting with it"""
    if not value:
        raise ValueError("Empty date value")
    match = _DATE_RE.match(str(value).strip())
    if not match:
        raise ValueError(f"Date must be YYYY-MM-DD: {value}")
    return date.fromisoformat(match.group(1))


def normalize_date(value: str) -> str:
    return parse_date(value).isoformat()


def appointment_datetime(date_value: str, time_value: str, overnight_start: Optional[int] = None) -> datetime:
    """
    Combine a stored date and time-of-day string into one naive local instant.

    Bookings are stored under the working day they belong to. When that day's
    window runs past midnight, pass its start minute as ``overnight_start``:
    earlier times then fall on the next calendar day.
    """
    day = parse_date(date_value)
    minutes = parse_time_to_minutes(time_value)
    if overnight_start is not None and minutes < overnight_start:
        minutes += MINUTES_PER_DAY
    return datetime.combine(day, datetime.min.time()) + timedelta(minutes=minutes)


def round_up_to(minutes: int, step: int) -> int:
    return -(-minutes // step) * step


def skew_tolerant_dates(today: date, tolerance: Optional[int] = None) -> list[str]:
    """Today first, then each neighbouring day within the tolerance"""
    tolerance = DATE_SKEW_TOLERANCE_DAYS if tolerance is None else tolerance
    days = [today]
    for offset in range(1, tolerance + 1):
        days.extend([today + timedelta(days=offset), today - timedelta(days=offset)])
    return [d.isoformat() for d in days]


def time_sort_key(value: str) -> int:
    """Minutes after midnight for ordering; unparseable times sort last"""
    try:
        return parse_time_to_minutes(value)
    except ValueError:
        return MINUTES_PER_DAY
