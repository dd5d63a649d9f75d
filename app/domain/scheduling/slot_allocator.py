"""Slot allocator - next bookable time for a doctor on a given day"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session, joinedload

from ...config import BOOKING_LEAD_MINUTES
from ...models import APPOINTMENT_UPCOMING, ROLE_DOCTOR, Appointment, ServiceType, User
from ...shared.exceptions import NotAvailable, NotFound, ScheduleFull, ValidationError
from ...shared.timeutils import (
    MINUTES_PER_DAY,
    Weekday,
    local_now,
    minutes_to_time,
    parse_date,
    parse_time_to_minutes,
    round_up_to,
)
from .schedule import DaySchedule, WeeklySchedule

logger = logging.getLogger(__name__)

# Duration assumed for an existing booking whose service type is unknown
DEFAULT_BOOKING_DURATION = 30
SLOT_ROUNDING_MINUTES = 5


@dataclass(frozen=True)
class SlotOffer:
    time: str
    queue_position: int
    minutes: int


def compute_next_slot(
    day: DaySchedule,
    bookings: list[tuple[str, Optional[int]]],
    service_duration: int,
    now_minutes: Optional[int] = None,
    lead_minutes: int = BOOKING_LEAD_MINUTES,
) -> SlotOffer:
    """
    Earliest start after the last existing booking that still fits the window.

    Args:
        day: the doctor's working day (must be available)
        bookings: (time, duration) of the day's live bookings, any order
        service_duration: minutes needed by the new booking
        now_minutes: minutes after midnight right now, only when booking for today

    Raises:
        ScheduleFull: when the slot plus the service would run past the window end
    """
    start, end = day.window()
    wraps = end > MINUTES_PER_DAY

    next_start = start
    if bookings:
        timeline = []
        for time_value, duration in bookings:
            minutes = parse_time_to_minutes(time_value)
            if wraps and minutes < start:
                minutes += MINUTES_PER_DAY
            timeline.append((minutes, duration or DEFAULT_BOOKING_DURATION))
        last_start, last_duration = max(timeline)
        next_start = max(start, last_start + last_duration)

    if now_minutes is not None:
        earliest = round_up_to(now_minutes + lead_minutes, SLOT_ROUNDING_MINUTES)
        if next_start < earliest:
            next_start = earliest

    if next_start + service_duration > end:
        raise ScheduleFull("Doctor schedule is full for this day.")

    return SlotOffer(
        time=minutes_to_time(next_start), queue_position=len(bookings) + 1, minutes=next_start
    )


class SlotAllocator:
    """Reads the doctor's schedule and bookings; never reserves anything"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = local_now):
        self.db = db
        self.clock = clock

    def compute_next_slot(
        self, doctor_id: int, date: str, service_type_id: int, hospital_id: int
    ) -> SlotOffer:
        try:
            day_date = parse_date(date)
        except ValueError as e:
            raise ValidationError(str(e)) from None
        date = day_date.isoformat()

        doctor = (
            self.db.query(User)
            .options(joinedload(User.availability), joinedload(User.unavailability))
            .filter(User.id == doctor_id, User.role == ROLE_DOCTOR)
            .first()
        )
        service_type = self.db.query(ServiceType).filter(ServiceType.id == service_type_id).first()
        if not doctor or not service_type:
            raise NotFound("Doctor or appointment type not found.")

        if any(ep.covers(date) for ep in doctor.unavailability):
            raise NotAvailable("Doctor is not available on this date.")

        weekday = Weekday.of(day_date)
        day = WeeklySchedule.from_rows(doctor.availability).for_day(weekday)
        if not day.serves(hospital_id, doctor.hospital_ids()):
            raise NotAvailable(f"Doctor is not available on {weekday.label} at this hospital.")

        existing = (
            self.db.query(Appointment)
            .options(joinedload(Appointment.service_type))
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.hospital_id == hospital_id,
                Appointment.date == date,
                Appointment.status == APPOINTMENT_UPCOMING,
            )
            .all()
        )
        bookings = [
            (a.time, a.service_type.duration if a.service_type else None) for a in existing
        ]

        now = self.clock()
        now_minutes = now.hour * 60 + now.minute if date == now.date().isoformat() else None

        offer = compute_next_slot(day, bookings, service_type.duration, now_minutes)
        logger.debug(f"Next slot for doctor {doctor_id} on {date}: {offer.time}")
        return offer
