"""Doctor domain schemas - Pydantic models for schedules and preferences"""

from typing import Optional

from pydantic import BaseModel, Field


class DayAvailability(BaseModel):
    dayOfWeek: str
    isAvailable: bool = False
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    hospital: Optional[int] = None


class UpdateAvailabilityRequest(BaseModel):
    availability: list[DayAvailability] = Field(..., min_length=7, max_length=7)


class UnavailabilityRequest(BaseModel):
    unavailableUntil: str
    reason: Optional[str] = None


class UnavailabilityResponse(BaseModel):
    success: bool = True
    episodeId: int
    startDate: str
    endDate: str
    reason: Optional[str] = None
    affectedCount: int


class ReminderPreferences(BaseModel):
    enabled: bool
    reminder24h: bool
    reminder1h: bool


class ReminderPreferencesUpdate(BaseModel):
    enabled: Optional[bool] = None
    reminder24h: Optional[bool] = None
    reminder1h: Optional[bool] = None


def schedule_response(schedule) -> list[DayAvailability]:
    return [
        DayAvailability(
            dayOfWeek=day.weekday.label,
            isAvailable=day.is_available,
            startTime=day.start_time,
            endTime=day.end_time,
            hospital=day.hospital_id,
        )
        for day in schedule.days
    ]
