"""Doctors router - FastAPI endpoints for schedules, unavailability and reminder preferences"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_manager, require_roles
from ...database import get_db
from ...models import ROLE_DOCTOR, User
from ...services.notification_service import NotificationDispatcher, get_dispatcher
from .schemas import (
    DayAvailability,
    ReminderPreferences,
    ReminderPreferencesUpdate,
    UnavailabilityRequest,
    UnavailabilityResponse,
    UpdateAvailabilityRequest,
    schedule_response,
)
from .service import DoctorService, day_from_entry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/doctors", tags=["Doctors"])

require_doctor = require_roles(ROLE_DOCTOR)


def get_doctor_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> DoctorService:
    """Dependency injection for DoctorService"""
    return DoctorService(db, dispatcher)


# ============================================================================
# REMINDER PREFERENCES (doctor self-service)
# ============================================================================


@router.get("/me/reminder-preferences", response_model=ReminderPreferences)
async def get_reminder_preferences(current_user: User = Depends(require_doctor)):
    return DoctorService.reminder_preferences(current_user)


@router.put("/me/reminder-preferences", response_model=ReminderPreferences)
async def update_reminder_preferences(
    data: ReminderPreferencesUpdate,
    current_user: User = Depends(require_doctor),
    service: DoctorService = Depends(get_doctor_service),
):
    return service.update_reminder_preferences(
        current_user,
        enabled=data.enabled,
        reminder_24h=data.reminder24h,
        reminder_1h=data.reminder1h,
    )


# ============================================================================
# WEEKLY SCHEDULE
# ============================================================================


@router.get("/{doctor_id}/availability", response_model=list[DayAvailability])
async def get_availability(
    doctor_id: int,
    current_user: User = Depends(get_current_user),
    service: DoctorService = Depends(get_doctor_service),
):
    return schedule_response(service.get_schedule(current_user, doctor_id))


@router.put("/{doctor_id}/availability", response_model=list[DayAvailability])
async def update_availability(
    doctor_id: int,
    data: UpdateAvailabilityRequest,
    current_user: User = Depends(require_manager),
    service: DoctorService = Depends(get_doctor_service),
):
    """Replace the doctor's whole week (seven entries, one per weekday)"""
    days = [day_from_entry(entry.model_dump()) for entry in data.availability]
    return schedule_response(service.update_schedule(current_user, doctor_id, days))


# ============================================================================
# UNAVAILABILITY
# ============================================================================


@router.post("/{doctor_id}/unavailability", response_model=UnavailabilityResponse)
async def mark_unavailable(
    doctor_id: int,
    data: UnavailabilityRequest,
    current_user: User = Depends(require_manager),
    service: DoctorService = Depends(get_doctor_service),
):
    episode, affected = service.mark_unavailable(current_user, doctor_id, data.unavailableUntil, data.reason)
    return UnavailabilityResponse(
        episodeId=episode.id,
        startDate=episode.start_date,
        endDate=episode.end_date,
        reason=episode.reason,
        affectedCount=affected,
    )


@router.post("/{doctor_id}/availability/restore")
async def restore_availability(
    doctor_id: int,
    current_user: User = Depends(require_manager),
    service: DoctorService = Depends(get_doctor_service),
):
    removed = service.restore_availability(current_user, doctor_id)
    return {"success": True, "removedEpisodes": removed}
