"""Doctor weekly schedule value objects"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

from ...shared.exceptions import ValidationError
from ...shared.timeutils import MINUTES_PER_DAY, Weekday, normalize_time, parse_time_to_minutes

DAYS_PER_WEEK = 7


@dataclass(frozen=True)
class DaySchedule:
    weekday: Weekday
    is_available: bool = False
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    hospital_id: Optional[int] = None

    def __post_init__(self):
        if self.is_available:
            if not self.start_time or not self.end_time:
                raise ValidationError(f"{self.weekday.label}: start and end time are required")
            try:
                object.__setattr__(self, "start_time", normalize_time(self.start_time))
                object.__setattr__(self, "end_time", normalize_time(self.end_time))
            except ValueError as e:
                raise ValidationError(f"{self.weekday.label}: {e}") from None

    def window(self) -> tuple[int, int]:
        """(start, end) in minutes after midnight; an end at or before the start wraps to the next day"""
        start = parse_time_to_minutes(self.start_time)
        end = parse_time_to_minutes(self.end_time)
        if end <= start:
            end += MINUTES_PER_DAY
        return start, end

    def overnight_start(self) -> Optional[int]:
        """Start minute of a window that runs past midnight, None for same-day windows"""
        if not self.is_available:
            return None
        start, end = self.window()
        return start if end > MINUTES_PER_DAY else None

    def serves(self, hospital_id: int, doctor_hospital_ids: Iterable[int] = ()) -> bool:
        """
        Whether this day is worked at ``hospital_id``.

        A day record without a hospital only counts when the doctor belongs to
        exactly that one hospital.
        """
        if not self.is_available:
            return False
        if self.hospital_id is not None:
            return self.hospital_id == hospital_id
        hospitals = set(doctor_hospital_ids)
        return hospitals == {hospital_id}


@dataclass(frozen=True)
class WeeklySchedule:
    days: tuple

    def __post_init__(self):
        if len(self.days) != DAYS_PER_WEEK:
            raise ValidationError("Availability must contain exactly 7 days")
        weekdays = [d.weekday for d in self.days]
        if sorted(weekdays) != list(Weekday):
            raise ValidationError("Availability must contain each weekday exactly once")
        object.__setattr__(self, "days", tuple(sorted(self.days, key=lambda d: d.weekday)))

    @classmethod
    def from_entries(cls, entries: Iterable[DaySchedule]) -> "WeeklySchedule":
        return cls(tuple(entries))

    @classmethod
    def from_rows(cls, rows) -> "WeeklySchedule":
        """Build from stored DoctorAvailability rows, treating missing days as days off"""
        by_day = {
            Weekday(r.weekday): DaySchedule(
                weekday=Weekday(r.weekday),
                is_available=bool(r.is_available),
                start_time=r.start_time,
                end_time=r.end_time,
                hospital_id=r.hospital_id,
            )
            for r in rows
        }
        return cls(tuple(by_day.get(day, DaySchedule(day)) for day in Weekday))

    @classmethod
    def empty(cls) -> "WeeklySchedule":
        return cls(tuple(DaySchedule(day) for day in Weekday))

    def for_day(self, weekday: Weekday) -> DaySchedule:
        return self.days[int(weekday)]

