import pytest
from sqlalchemy.exc import IntegrityError

from app.domain.appointments.service import AppointmentService
from app.domain.queue.service import QueueCoordinator
from app.models import (
    ACTIVE_QUEUE_STATUSES,
    APPOINTMENT_COMPLETED,
    QUEUE_DONE,
    QUEUE_HELD,
    QUEUE_LEFT,
    QUEUE_REMOVED,
    QUEUE_SERVING,
    QUEUE_WAITING,
    Appointment,
    QueueItem,
)
from app.services.notification_service import CATEGORY_SYSTEM
from app.shared.exceptions import AlreadyQueued, NotFound, ValidationError


@pytest.fixture
def queue(db_session, dispatcher, clock):
    return QueueCoordinator(db_session, dispatcher, clock)


@pytest.fixture
def appointments(db_session, dispatcher, clock):
    return AppointmentService(db_session, dispatcher, clock)


def _join_in_order(queue, clinic, patients, clock):
    items = []
    for patient in patients:
        items.append(queue.join(patient, clinic["doctor"].id, clinic["hospital"].id))
        clock.advance(minutes=1)
    return items


def test_join_assigns_sequential_tickets(queue, clinic, factory, clock):
    first, second = factory.patient(), factory.patient()

    a, b = _join_in_order(queue, clinic, [first, second], clock)

    assert (a.queue_number, b.queue_number) == ("K001", "K002")
    assert queue.position_of(b) == (2, 15)


def test_join_reuses_same_day_appointment_ticket(queue, appointments, clinic, factory, db_session, clock):
    booked_first = factory.patient(balance="100")
    patient = factory.patient(balance="100")
    appointments.book(
        booked_first, clinic["doctor"].id, clinic["hospital"].id, clinic["service"].id, clock.day(1), "9:00"
    )
    appointment = appointments.book(
        patient, clinic["doctor"].id, clinic["hospital"].id, clinic["service"].id, clock.day(1), "10:00"
    )
    # Move the booking onto today without the automatic queue entry
    appointment.date = clock.day(0)
    db_session.commit()

    item = queue.join(patient, clinic["doctor"].id, clinic["hospital"].id)

    assert item.queue_number == "K002"
    assert item.appointment_id == appointment.id


def test_patient_holds_one_active_entry(queue, clinic, factory, clock):
    other_doctor = factory.doctor(clinic["hospital"], name="Zaid")
    patient = factory.patient()
    queue.join(patient, clinic["doctor"].id, clinic["hospital"].id)

    with pytest.raises(AlreadyQueued):
        queue.join(patient, other_doctor.id, clinic["hospital"].id)

    left = queue.leave(patient)
    assert left.status == QUEUE_LEFT
    assert queue.join(patient, other_doctor.id, clinic["hospital"].id).status == QUEUE_WAITING


def test_storage_rejects_second_active_entry(db_session, clinic, factory, clock):
    patient = factory.patient()
    for number in ("K001", "K002"):
        db_session.add(
            QueueItem(
                patient_id=patient.id,
                doctor_id=clinic["doctor"].id,
                hospital_id=clinic["hospital"].id,
                queue_number=number,
                status=QUEUE_WAITING,
                check_in_time=clock(),
            )
        )
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_join_unknown_doctor_or_hospital(queue, clinic, factory):
    patient = factory.patient()
    other = factory.hospital("Other")
    with pytest.raises(NotFound):
        queue.join(patient, clinic["doctor"].id, other.id)
    with pytest.raises(NotFound):
        queue.join(patient, 9999, clinic["hospital"].id)


def test_leave_without_entry_is_noop(queue, factory):
    assert queue.leave(factory.patient()) is None


def test_hold_and_resume_keep_check_in_priority(queue, clinic, factory, clock):
    patients = [factory.patient() for _ in range(3)]
    first, second, third = _join_in_order(queue, clinic, patients, clock)
    operator = factory.staff(clinic["hospital"])
    checked_in = first.check_in_time

    held = queue.hold(operator, first.id)
    assert queue.position_of(held) == (-1, 0)
    assert queue.position_of(second) == (1, 0)

    resumed = queue.resume(operator, first.id)
    assert resumed.status == QUEUE_WAITING
    assert resumed.check_in_time == checked_in
    assert queue.position_of(resumed) == (1, 0)
    assert queue.position_of(third) == (3, 30)

    with pytest.raises(ValidationError):
        queue.resume(operator, first.id)


def test_hold_rejects_finished_entry(queue, clinic, factory, clock):
    patient = factory.patient()
    item = queue.join(patient, clinic["doctor"].id, clinic["hospital"].id)
    queue.leave(patient)

    with pytest.raises(ValidationError):
        queue.hold(clinic["doctor"], item.id)


def test_call_next_completes_and_promotes(queue, appointments, clinic, factory, dispatcher, db_session, clock):
    patients = [factory.patient(balance="100") for _ in range(3)]
    booked = []
    for patient, time in zip(patients, ("11:00", "11:15", "11:30")):
        booked.append(
            appointments.book(
                patient, clinic["doctor"].id, clinic["hospital"].id, clinic["service"].id, clock.day(0), time
            )
        )
        clock.advance(minutes=1)
    doctor = clinic["doctor"]

    serving = queue.call_next(doctor, doctor.id)
    assert serving.patient_id == patients[0].id
    assert serving.status == QUEUE_SERVING
    assert len(dispatcher.sent_to(patients[1].id, CATEGORY_SYSTEM)) == 1

    serving = queue.call_next(doctor, doctor.id)
    assert serving.patient_id == patients[1].id
    first_item = db_session.query(QueueItem).filter(QueueItem.patient_id == patients[0].id).one()
    assert first_item.status == QUEUE_DONE
    assert db_session.get(Appointment, booked[0].id).status == APPOINTMENT_COMPLETED
    assert len(dispatcher.sent_to(patients[2].id, CATEGORY_SYSTEM)) == 1


def test_call_next_on_empty_queue(queue, clinic):
    assert queue.call_next(clinic["doctor"], clinic["doctor"].id) is None


def test_walk_in_gets_w_ticket(queue, clinic, factory):
    staff = factory.staff(clinic["hospital"])

    first = queue.add_walk_in(staff, "Ali", clinic["doctor"].id)
    second = queue.add_walk_in(staff, "Mona", clinic["doctor"].id)

    assert (first.queue_number, second.queue_number) == ("W001", "W002")
    assert first.patient_id is None
    assert first.display_name == "Ali"
    assert first.hospital_id == clinic["hospital"].id

    with pytest.raises(ValidationError):
        queue.add_walk_in(staff, "  ", clinic["doctor"].id)


def test_walk_in_by_specialty_routes_to_least_loaded(queue, factory):
    hospital = factory.hospital()
    specialty = factory.specialty("Pediatrics")
    busy = factory.doctor(hospital, name="Zaid", specialties=[specialty])
    free = factory.doctor(hospital, name="Yusra", specialties=[specialty])
    staff = factory.staff(hospital)
    for name in ("A", "B", "C"):
        queue.add_walk_in(staff, name, busy.id)

    first = queue.add_walk_in_by_specialty(staff, "Walk-in 1", specialty.id)
    second = queue.add_walk_in_by_specialty(staff, "Walk-in 2", specialty.id)

    assert first.doctor_id == free.id
    assert second.doctor_id == free.id


def test_walk_in_by_specialty_tie_goes_to_first_doctor(queue, factory):
    hospital = factory.hospital()
    specialty = factory.specialty("Dermatology")
    first_doctor = factory.doctor(hospital, name="Adel", specialties=[specialty])
    factory.doctor(hospital, name="Basma", specialties=[specialty])
    staff = factory.staff(hospital)

    assert queue.add_walk_in_by_specialty(staff, "Walk-in", specialty.id).doctor_id == first_doctor.id


def test_walk_in_by_unknown_specialty(queue, clinic, factory):
    staff = factory.staff(clinic["hospital"])
    with pytest.raises(NotFound):
        queue.add_walk_in_by_specialty(staff, "Walk-in", 9999)


def test_check_in_reuses_ticket_and_guards_duplicates(queue, appointments, clinic, factory, clock):
    patient = factory.patient(balance="100")
    appointment = appointments.book(
        patient, clinic["doctor"].id, clinic["hospital"].id, clinic["service"].id, clock.day(1), "10:00"
    )
    staff = factory.staff(clinic["hospital"])

    item = queue.check_in(staff, appointment.id)

    assert item.queue_number == appointment.queue_number
    with pytest.raises(AlreadyQueued):
        queue.check_in(staff, appointment.id)


def test_status_auto_joins_skewed_appointment(queue, appointments, clinic, factory, db_session, clock):
    patient = factory.patient(balance="100")
    appointments.book(
        patient, clinic["doctor"].id, clinic["hospital"].id, clinic["service"].id, clock.day(1), "10:00"
    )
    assert db_session.query(QueueItem).count() == 0

    status = queue.patient_status(patient)

    assert status["inQueue"] is True
    assert status["position"] == 1
    assert status["estimatedWaitTime"] == 0
    assert status["nowServingNumber"] == "000"
    assert len(status["todaysAppointments"]) == 1

    again = queue.patient_status(patient)
    assert again["queueNumber"] == status["queueNumber"]
    active = db_session.query(QueueItem).filter(QueueItem.status.in_(ACTIVE_QUEUE_STATUSES)).count()
    assert active == 1


def test_status_without_appointment(queue, factory):
    status = queue.patient_status(factory.patient())
    assert status["inQueue"] is False
    assert status["upcomingAppointments"] == []


def test_doctor_board_groups_entries(queue, clinic, factory, clock):
    staff = factory.staff(clinic["hospital"])
    waiting, held = (factory.patient() for _ in range(2))
    _join_in_order(queue, clinic, [waiting, held], clock)
    held_item = queue.repo.get_active_for_patient(queue.db, held.id)
    queue.hold(staff, held_item.id)

    board = queue.doctor_board(staff, clinic["doctor"].id)

    assert [i.patient_id for i in board["waiting"]] == [waiting.id]
    assert [i.status for i in board["held"]] == [QUEUE_HELD]
    assert board["nowServing"] is None


def test_remove_frees_patient_and_keeps_history(queue, clinic, factory, clock):
    patient = factory.patient()
    staff = factory.staff(clinic["hospital"])
    first = queue.join(patient, clinic["doctor"].id, clinic["hospital"].id)

    removed = queue.remove(staff, first.id)
    assert removed.status == QUEUE_REMOVED

    clock.advance(minutes=5)
    second = queue.join(patient, clinic["doctor"].id, clinic["hospital"].id)

    assert [item.id for item in queue.history(patient)] == [second.id, first.id]
    with pytest.raises(NotFound):
        queue.remove(staff, 9999)
