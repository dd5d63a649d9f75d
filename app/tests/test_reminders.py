import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from app.domain.reminders.scheduler import ReminderScheduler
from app.domain.reminders.service import REMINDER_1H, REMINDER_24H, DoctorReminderService, eligibility_problem
from app.models import APPOINTMENT_CANCELLED, APPOINTMENT_UPCOMING, Appointment, Notification
from app.services.notification_service import CATEGORY_REMINDER
from app.shared.timeutils import minutes_to_time


@pytest.fixture
def reminders(db_session, dispatcher, clock):
    return DoctorReminderService(db_session, dispatcher, clock)


def _appointment_at(db, clinic, patient, when, status=APPOINTMENT_UPCOMING, time=None):
    appointment = Appointment(
        doctor_id=clinic["doctor"].id,
        patient_id=patient.id,
        hospital_id=clinic["hospital"].id,
        service_type_id=clinic["service"].id,
        date=when.date().isoformat(),
        time=time or minutes_to_time(when.hour * 60 + when.minute),
        cost=Decimal("50"),
        status=status,
    )
    db.add(appointment)
    db.commit()
    return appointment


def test_24h_reminder_sent_once(reminders, db_session, clinic, factory, dispatcher, clock):
    appointment = _appointment_at(db_session, clinic, factory.patient(), clock() + timedelta(hours=24, minutes=10))

    first = reminders.run_pass("24h")
    second = reminders.run_pass("24h")

    assert (first["total"], first["sent"], first["skipped"]) == (1, 1, 0)
    assert (second["total"], second["sent"]) == (0, 0)
    assert len(dispatcher.sent_to(clinic["doctor"].id, CATEGORY_REMINDER)) == 1

    db_session.refresh(appointment)
    assert appointment.doctor_reminder_24h_sent is True
    assert appointment.doctor_reminder_24h_sent_at == clock()
    assert appointment.doctor_reminder_1h_sent is False
    inbox = db_session.query(Notification).filter(Notification.user_id == clinic["doctor"].id).all()
    assert [n.category for n in inbox] == [CATEGORY_REMINDER]


def test_24h_reminder_waits_for_window(reminders, db_session, clinic, factory, dispatcher, clock):
    appointment = _appointment_at(db_session, clinic, factory.patient(), clock() + timedelta(hours=24, minutes=45))

    early = reminders.run_pass("24h")
    assert (early["sent"], early["skipped"]) == (0, 1)
    assert early["details"] == []

    clock.advance(minutes=20)
    later = reminders.run_pass("24h")

    assert later["sent"] == 1
    db_session.refresh(appointment)
    assert appointment.doctor_reminder_24h_sent_at == clock()


def test_1h_reminder_window(reminders, db_session, clinic, factory, clock):
    inside = _appointment_at(db_session, clinic, factory.patient(), clock() + timedelta(minutes=65))
    _appointment_at(db_session, clinic, factory.patient(), clock() + timedelta(minutes=80))

    result = reminders.run_pass("1h")

    assert (result["total"], result["sent"], result["skipped"]) == (2, 1, 1)
    assert result["details"][0]["appointmentId"] == inside.id
    db_session.refresh(inside)
    assert inside.doctor_reminder_1h_sent is True


def test_past_and_cancelled_appointments_ignored(reminders, db_session, clinic, factory, clock):
    _appointment_at(db_session, clinic, factory.patient(), clock() - timedelta(minutes=5))
    _appointment_at(
        db_session, clinic, factory.patient(), clock() + timedelta(hours=1), status=APPOINTMENT_CANCELLED
    )

    result = reminders.run_pass("1h")

    assert (result["total"], result["sent"], result["skipped"]) == (1, 0, 1)


@pytest.mark.parametrize(
    "fields, reason",
    [
        ({"is_disabled": True}, "Doctor account is disabled or inactive"),
        ({"is_active": False}, "Doctor account is disabled or inactive"),
        ({"reminders_enabled": False}, "Doctor has disabled appointment reminders"),
        ({"reminder_24h": False}, "Doctor has disabled 24h reminders"),
    ],
)
def test_ineligible_doctor_is_skipped_with_reason(
    reminders, db_session, clinic, factory, dispatcher, clock, fields, reason
):
    for name, value in fields.items():
        setattr(clinic["doctor"], name, value)
    db_session.commit()
    appointment = _appointment_at(db_session, clinic, factory.patient(), clock() + timedelta(hours=24))

    result = reminders.run_pass("24h")

    assert (result["sent"], result["skipped"]) == (0, 1)
    assert result["details"] == [
        {"appointmentId": appointment.id, "success": False, "skipped": True, "reason": reason}
    ]
    assert dispatcher.sent == []
    db_session.refresh(appointment)
    assert appointment.doctor_reminder_24h_sent is False


def test_class_preference_is_independent(db_session, clinic):
    doctor = clinic["doctor"]
    doctor.reminder_24h = False

    assert eligibility_problem(doctor, REMINDER_24H) == "Doctor has disabled 24h reminders"
    assert eligibility_problem(doctor, REMINDER_1H) is None
    assert eligibility_problem(None, REMINDER_1H) == "Doctor account is disabled or inactive"


def test_unparseable_time_counts_as_failed(reminders, db_session, clinic, factory, clock):
    _appointment_at(db_session, clinic, factory.patient(), clock() + timedelta(hours=1), time="soon")

    result = reminders.run_pass("1h")

    assert (result["failed"], result["sent"]) == (1, 0)
    assert result["details"][0]["success"] is False


def test_dispatch_failure_counts_as_failed(reminders, db_session, clinic, factory, dispatcher, clock):
    appointment = _appointment_at(db_session, clinic, factory.patient(), clock() + timedelta(hours=1))

    def broken(*args, **kwargs):
        raise RuntimeError("transport down")

    dispatcher.dispatch_later = broken
    result = reminders.run_pass("1h")

    assert (result["processed"], result["failed"], result["sent"]) == (1, 1, 0)
    assert "transport down" in result["details"][0]["error"]
    db_session.refresh(appointment)
    assert appointment.doctor_reminder_1h_sent is False


def test_run_all_summary(reminders, db_session, clinic, factory, clock):
    _appointment_at(db_session, clinic, factory.patient(), clock() + timedelta(hours=24))
    _appointment_at(db_session, clinic, factory.patient(), clock() + timedelta(hours=1))

    summary = reminders.run_all()

    assert summary["totalCandidates"] == 4
    assert summary["totalSent"] == 2
    assert summary["totalSkipped"] == 2
    assert summary["totalFailed"] == 0
    assert summary["timestamp"] == clock().isoformat()
    assert summary["processingTime"].endswith("ms")
    assert summary["reminders24h"]["reminderType"] == "24h"
    assert summary["reminders1h"]["reminderType"] == "1h"


# ============================================================================
# Scheduler
# ============================================================================


def test_scheduler_trigger_now_records_status(session_factory, db_session, clinic, factory, dispatcher, clock):
    _appointment_at(db_session, clinic, factory.patient(), clock() + timedelta(hours=1))
    scheduler = ReminderScheduler(dispatcher, session_factory=session_factory, clock=clock)
    assert scheduler.status()["lastRun"] is None

    summary = asyncio.run(scheduler.trigger_now())

    assert summary["totalSent"] == 1
    status = scheduler.status()
    assert status["running"] is False
    assert status["lastRun"] == clock().isoformat()
    assert status["lastSummary"] is summary
    assert len(dispatcher.sent_to(clinic["doctor"].id, CATEGORY_REMINDER)) == 1


def test_scheduler_start_and_stop(session_factory, dispatcher, clock):
    scheduler = ReminderScheduler(dispatcher, session_factory=session_factory, interval_minutes=15, clock=clock)

    async def lifecycle():
        scheduler.start()
        started = scheduler.running
        scheduler.start()
        await scheduler.stop()
        return started

    assert asyncio.run(lifecycle()) is True
    assert scheduler.running is False
    assert scheduler.status()["intervalMinutes"] == 15


def test_overnight_slot_reminded_on_the_following_calendar_day(
    reminders, db_session, clinic, factory, dispatcher, clock
):
    nightly = factory.doctor(clinic["hospital"], name="Nour", start="10:00 PM", end="2:00 AM")
    appointment = Appointment(
        doctor_id=nightly.id,
        patient_id=factory.patient().id,
        hospital_id=clinic["hospital"].id,
        service_type_id=clinic["service"].id,
        date=clock.day(0),
        time="1:00 AM",
        cost=Decimal("50"),
    )
    db_session.add(appointment)
    db_session.commit()

    assert reminders.run_pass("1h")["sent"] == 0

    clock.advance(hours=16)
    result = reminders.run_pass("1h")

    assert result["sent"] == 1
    assert len(dispatcher.sent_to(nightly.id, CATEGORY_REMINDER)) == 1
