"""
Doctor service - weekly schedules, unavailability and reminder preferences

Marking a doctor unavailable also doctor-cancels every live booking inside
the period, in the same unit of work as the new episode.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...auth import ensure_doctor_access
from ...database import unit_of_work
from ...models import ROLE_HOSPITAL_MANAGER, UnavailabilityEpisode, User
from ...services.notification_service import NotificationDispatcher, notifying_unit_of_work
from ...shared.exceptions import NotFound, Unauthorized, ValidationError
from ...shared.timeutils import Weekday, local_now, parse_date
from ..appointments.service import AppointmentService
from ..scheduling.schedule import DaySchedule, WeeklySchedule
from .repository import DoctorRepository

logger = logging.getLogger(__name__)


class DoctorService:
    """Service layer for doctor schedule management"""

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock
        self.repo = DoctorRepository()

    def _get_doctor(self, actor: User, doctor_id: int) -> User:
        doctor = self.repo.get_doctor(self.db, doctor_id)
        if not doctor:
            raise NotFound("Doctor not found")
        ensure_doctor_access(actor, doctor)
        return doctor

    # ========================================================================
    # WEEKLY SCHEDULE
    # ========================================================================

    def get_schedule(self, actor: User, doctor_id: int) -> WeeklySchedule:
        return WeeklySchedule.from_rows(self._get_doctor(actor, doctor_id).availability)

    def update_schedule(self, actor: User, doctor_id: int, days: list[DaySchedule]) -> WeeklySchedule:
        """
        Replace the doctor's week with exactly seven day records.

        Hospital managers only assign days to their own hospital; a day already
        owned by another hospital is kept unchanged.
        """
        doctor = self._get_doctor(actor, doctor_id)
        requested = WeeklySchedule.from_entries(days)
        current = WeeklySchedule.from_rows(doctor.availability)
        doctor_hospitals = doctor.hospital_ids()

        if actor.role == ROLE_HOSPITAL_MANAGER:
            own = actor.primary_hospital_id
            if not own or own not in doctor_hospitals:
                raise Unauthorized("Not authorized to edit this doctor.")
            merged = []
            for day in requested.days:
                existing = current.for_day(day.weekday)
                if existing.hospital_id and existing.hospital_id != own:
                    merged.append(existing)
                elif day.hospital_id and day.hospital_id != own:
                    merged.append(
                        DaySchedule(day.weekday, day.is_available, day.start_time, day.end_time, own)
                    )
                else:
                    merged.append(day)
            requested = WeeklySchedule.from_entries(merged)
        else:
            for day in requested.days:
                if day.hospital_id and day.hospital_id not in doctor_hospitals:
                    raise ValidationError(f"{day.weekday.label}: doctor does not work at hospital {day.hospital_id}")

        with unit_of_work(self.db):
            self.repo.replace_availability(self.db, doctor, requested)
        logger.info(f"📅 Weekly schedule replaced for doctor {doctor.id} by user {actor.id}")
        return requested

    # ========================================================================
    # UNAVAILABILITY
    # ========================================================================

    def mark_unavailable(
        self, actor: User, doctor_id: int, until: str, reason: Optional[str] = None
    ) -> tuple[UnavailabilityEpisode, int]:
        """
        Record an episode from today until ``until`` and doctor-cancel the live
        bookings it covers, one apology per appointment.

        Returns:
            (episode, number of affected appointments)
        """
        if not until:
            raise ValidationError("Please provide an end date for the unavailability period.")
        try:
            end = parse_date(until).isoformat()
        except ValueError:
            raise ValidationError("Invalid date provided.") from None
        today = self.clock().date().isoformat()
        if end < today:
            raise ValidationError("The unavailability period cannot end in the past.")

        doctor = self._get_doctor(actor, doctor_id)
        if self.dispatcher is None:
            raise RuntimeError("DoctorService needs a NotificationDispatcher")
        appointments = AppointmentService(self.db, self.dispatcher, self.clock)

        with notifying_unit_of_work(self.db, self.dispatcher) as outbox:
            episode = self.repo.add_episode(
                self.db, doctor_id=doctor.id, start_date=today, end_date=end, reason=reason
            )
            affected = appointments.repo.get_doctor_upcoming_between(self.db, doctor.id, today, end)
            for appointment in affected:
                appointments.mark_doctor_cancelled(appointment, outbox)

        self.db.expire(doctor, ["unavailability"])
        logger.info(
            f"🩺 Doctor {doctor.id} unavailable {today}..{end}: {len(affected)} appointment(s) doctor-cancelled"
        )
        return episode, len(affected)

    def restore_availability(self, actor: User, doctor_id: int) -> int:
        """Drop every episode that has not ended yet"""
        doctor = self._get_doctor(actor, doctor_id)
        today = self.clock().date().isoformat()
        with unit_of_work(self.db):
            removed = self.repo.delete_open_episodes(self.db, doctor.id, today)
        self.db.expire(doctor, ["unavailability"])
        logger.info(f"📅 Availability restored for doctor {doctor.id} ({removed} episode(s) removed)")
        return removed

    # ========================================================================
    # REMINDER PREFERENCES
    # ========================================================================

    @staticmethod
    def reminder_preferences(doctor: User) -> dict:
        return {
            "enabled": doctor.reminders_enabled,
            "reminder24h": doctor.reminder_24h,
            "reminder1h": doctor.reminder_1h,
        }

    def update_reminder_preferences(
        self,
        doctor: User,
        enabled: Optional[bool] = None,
        reminder_24h: Optional[bool] = None,
        reminder_1h: Optional[bool] = None,
    ) -> dict:
        """Merge the given flags into the doctor's preferences"""
        with unit_of_work(self.db):
            if enabled is not None:
                doctor.reminders_enabled = enabled
            if reminder_24h is not None:
                doctor.reminder_24h = reminder_24h
            if reminder_1h is not None:
                doctor.reminder_1h = reminder_1h
        return self.reminder_preferences(doctor)


def day_from_entry(entry: dict) -> DaySchedule:
    """Build a DaySchedule from an API entry keyed by weekday name"""
    try:
        weekday = Weekday.from_name(entry["dayOfWeek"])
    except (KeyError, ValueError) as e:
        raise ValidationError(f"Invalid availability entry: {e}") from None
    return DaySchedule(
        weekday=weekday,
        is_available=bool(entry.get("isAvailable")),
        start_time=entry.get("startTime") or None,
        end_time=entry.get("endTime") or None,
        hospital_id=entry.get("hospital"),
    )
