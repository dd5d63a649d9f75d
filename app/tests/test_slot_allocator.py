from decimal import Decimal

import pytest

from app.domain.scheduling import DaySchedule, SlotAllocator, compute_next_slot
from app.models import APPOINTMENT_CANCELLED, APPOINTMENT_UPCOMING, Appointment, UnavailabilityEpisode
from app.shared.exceptions import NotAvailable, NotFound, ScheduleFull
from app.shared.timeutils import Weekday, minutes_to_time


def _day(start, end):
    return DaySchedule(Weekday.MONDAY, True, start, end, hospital_id=1)


def _fifteen_minute_bookings(first_minutes, count):
    return [(minutes_to_time(first_minutes + 15 * i), 15) for i in range(count)]


def test_empty_day_starts_at_window_start():
    offer = compute_next_slot(_day("09:00", "15:00"), [], 15)
    assert offer.time == "9:00 AM"
    assert offer.queue_position == 1


def test_day_fills_after_twenty_four_fifteen_minute_bookings():
    day = _day("09:00", "15:00")

    last = compute_next_slot(day, _fifteen_minute_bookings(9 * 60, 23), 15)
    assert last.time == "2:45 PM"
    assert last.queue_position == 24

    with pytest.raises(ScheduleFull):
        compute_next_slot(day, _fifteen_minute_bookings(9 * 60, 24), 15)


def test_midnight_end_counts_as_end_of_day():
    day = _day("20:00", "00:00")

    offer = compute_next_slot(day, _fifteen_minute_bookings(20 * 60, 15), 15)

    assert offer.time == "11:45 PM"
    with pytest.raises(ScheduleFull):
        compute_next_slot(day, _fifteen_minute_bookings(20 * 60, 16), 15)


def test_overnight_window_orders_after_midnight_bookings_last():
    day = _day("10:00 PM", "2:00 AM")
    bookings = [("12:30 AM", 30), ("11:00 PM", 30)]

    assert compute_next_slot(day, bookings, 30).time == "1:00 AM"


def test_bookings_are_ordered_by_time_not_insertion():
    day = _day("9:00 AM", "5:00 PM")
    bookings = [("11:00 AM", 30), ("9:00 AM", 30), ("10:00 AM", 15)]

    assert compute_next_slot(day, bookings, 15).time == "11:30 AM"


def test_unknown_booking_duration_uses_default():
    offer = compute_next_slot(_day("9:00 AM", "5:00 PM"), [("9:00 AM", None)], 15)
    assert offer.time == "9:30 AM"


def test_today_floors_to_lead_time_rounded_to_five_minutes():
    day = _day("9:00 AM", "5:00 PM")
    offer = compute_next_slot(day, [], 15, now_minutes=10 * 60 + 2)
    assert offer.time == "10:20 AM"


# ============================================================================
# Database-backed allocator
# ============================================================================


def _book(db, clinic, patient, date, time, status=APPOINTMENT_UPCOMING):
    db.add(
        Appointment(
            doctor_id=clinic["doctor"].id,
            patient_id=patient.id,
            hospital_id=clinic["hospital"].id,
            service_type_id=clinic["service"].id,
            date=date,
            time=time,
            cost=Decimal("50"),
            status=status,
        )
    )
    db.commit()


def test_allocator_skips_cancelled_bookings(db_session, clinic, factory, clock):
    patient = factory.patient()
    tomorrow = clock.day(1)
    _book(db_session, clinic, patient, tomorrow, "9:00 AM")
    _book(db_session, clinic, patient, tomorrow, "9:15 AM", status=APPOINTMENT_CANCELLED)
    allocator = SlotAllocator(db_session, clock)

    offer = allocator.compute_next_slot(
        clinic["doctor"].id, tomorrow, clinic["service"].id, clinic["hospital"].id
    )

    assert offer.time == "9:15 AM"
    assert offer.queue_position == 2


def test_allocator_applies_lead_time_only_today(db_session, clinic, clock):
    clock.advance(hours=2, minutes=2)
    allocator = SlotAllocator(db_session, clock)
    args = (clinic["doctor"].id, clinic["service"].id, clinic["hospital"].id)

    today = allocator.compute_next_slot(args[0], clock.day(0), args[1], args[2])
    tomorrow = allocator.compute_next_slot(args[0], clock.day(1), args[1], args[2])

    assert today.time == "10:20 AM"
    assert tomorrow.time == "9:00 AM"


def test_allocator_rejects_other_hospital(db_session, clinic, factory, clock):
    other = factory.hospital("Other")
    allocator = SlotAllocator(db_session, clock)

    with pytest.raises(NotAvailable):
        allocator.compute_next_slot(clinic["doctor"].id, clock.day(1), clinic["service"].id, other.id)


def test_allocator_rejects_day_off(db_session, factory, clock):
    hospital = factory.hospital()
    # Works Monday only; the fixed clock is a Tuesday
    doctor = factory.doctor(hospital, days=[Weekday.MONDAY])
    service = factory.service_type(hospital)

    with pytest.raises(NotAvailable):
        SlotAllocator(db_session, clock).compute_next_slot(doctor.id, clock.day(0), service.id, hospital.id)


def test_allocator_rejects_unavailability_episode(db_session, clinic, clock):
    db_session.add(
        UnavailabilityEpisode(
            doctor_id=clinic["doctor"].id, start_date=clock.day(0), end_date=clock.day(2), reason="Leave"
        )
    )
    db_session.commit()

    with pytest.raises(NotAvailable):
        SlotAllocator(db_session, clock).compute_next_slot(
            clinic["doctor"].id, clock.day(2), clinic["service"].id, clinic["hospital"].id
        )


def test_allocator_unknown_doctor(db_session, clinic, clock):
    with pytest.raises(NotFound):
        SlotAllocator(db_session, clock).compute_next_slot(
            9999, clock.day(1), clinic["service"].id, clinic["hospital"].id
        )
