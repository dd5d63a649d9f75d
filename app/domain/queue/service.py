"""
Queue coordinator - the live per-doctor waiting line

Each doctor's line is the FIFO of Waiting entries (by check-in time), at most
one Serving entry, and any number of Held entries that staff resume by hand.
A registered patient may hold only one active (Waiting, Serving or Held)
entry at a time across every doctor.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import ensure_doctor_access
from ...config import AVERAGE_CONSULTATION_MINUTES
from ...database import unit_of_work
from ...models import (
    APPOINTMENT_COMPLETED,
    APPOINTMENT_UPCOMING,
    QUEUE_DONE,
    QUEUE_HELD,
    QUEUE_LEFT,
    QUEUE_REMOVED,
    QUEUE_SERVING,
    QUEUE_WAITING,
    ROLE_DOCTOR,
    Appointment,
    QueueItem,
    User,
    user_hospitals,
    user_specialties,
)
from ...notification_templates import next_in_line
from ...services.notification_service import (
    CATEGORY_SYSTEM,
    NotificationDispatcher,
    notify,
    notifying_unit_of_work,
)
from ...shared.exceptions import AlreadyQueued, NotFound, ValidationError
from ...shared.timeutils import Weekday, local_now, skew_tolerant_dates, time_sort_key
from ..scheduling.schedule import WeeklySchedule
from .repository import QueueRepository
from .tickets import WALK_IN_PREFIX, format_ticket, ticket_prefix

logger = logging.getLogger(__name__)


class QueueCoordinator:
    """Service layer for the live queue"""

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = local_now,
        average_consultation_minutes: int = AVERAGE_CONSULTATION_MINUTES,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock
        self.average_consultation_minutes = average_consultation_minutes
        self.repo = QueueRepository()

    # ------------------------------------------------------------------
    # Helpers shared with the appointment state machine
    # ------------------------------------------------------------------

    def today(self) -> str:
        return self.clock().date().isoformat()

    def _day_start(self) -> datetime:
        return datetime.combine(self.clock().date(), datetime.min.time())

    def next_ticket(self, doctor: User, hospital_id: int, prefix: Optional[str] = None) -> str:
        """Next per-doctor, per-day ticket at ``hospital_id``"""
        count = self.repo.count_for_day(self.db, doctor.id, hospital_id, self._day_start())
        return format_ticket(prefix or ticket_prefix(doctor), count + 1)

    def _insert(
        self,
        doctor_id: int,
        hospital_id: int,
        queue_number: str,
        patient_id: Optional[int] = None,
        walk_in_name: Optional[str] = None,
        appointment_id: Optional[int] = None,
    ) -> QueueItem:
        item = self.repo.add_item(
            self.db,
            patient_id=patient_id,
            walk_in_name=walk_in_name,
            doctor_id=doctor_id,
            hospital_id=hospital_id,
            appointment_id=appointment_id,
            queue_number=queue_number,
            status=QUEUE_WAITING,
            check_in_time=self.clock(),
        )
        logger.info(
            f"✅ Queue entry {queue_number} added for doctor {doctor_id} "
            f"({'patient ' + str(patient_id) if patient_id else 'walk-in ' + str(walk_in_name)})"
        )
        return item

    def enqueue_for_appointment(self, appointment: Appointment) -> Optional[QueueItem]:
        """
        Seed a Waiting entry for a same-day appointment inside the caller's
        unit of work. Skipped when the patient is already active somewhere.
        """
        if self.repo.get_active_for_patient(self.db, appointment.patient_id):
            logger.info(f"Patient {appointment.patient_id} already queued - seeding skipped")
            return None
        return self._insert(
            appointment.doctor_id,
            appointment.hospital_id,
            appointment.queue_number,
            patient_id=appointment.patient_id,
            appointment_id=appointment.id,
        )

    def release_for_appointment(self, appointment: Appointment, delete: bool = False) -> int:
        """Drop the appointment's Waiting/Held entries inside the caller's unit of work"""
        items = self.repo.get_live_for_appointment(self.db, appointment, self.today())
        for item in items:
            if delete:
                self.db.delete(item)
            else:
                item.status = QUEUE_REMOVED
        if items:
            self.db.flush()
            logger.info(f"Released {len(items)} queue entr(ies) for appointment {appointment.id}")
        return len(items)

    def position_of(self, item: QueueItem) -> tuple[int, int]:
        """(1-based position, estimated wait minutes); (-1, 0) while Held, (0, 0) otherwise"""
        if item.status == QUEUE_HELD:
            return -1, 0
        if item.status != QUEUE_WAITING:
            return 0, 0
        waiting = self.repo.get_waiting(self.db, item.doctor_id)
        position = next((i for i, w in enumerate(waiting, start=1) if w.id == item.id), 0)
        return position, max(position - 1, 0) * self.average_consultation_minutes

    def _get_doctor(self, doctor_id: int) -> User:
        doctor = self.db.query(User).filter(User.id == doctor_id, User.role == ROLE_DOCTOR).first()
        if not doctor:
            raise NotFound("Doctor not found.")
        return doctor

    def _get_item(self, item_id: int, actor: Optional[User] = None) -> QueueItem:
        item = self.repo.get_item(self.db, item_id, for_update=True)
        if not item:
            raise NotFound("Queue item not found")
        if actor is not None:
            ensure_doctor_access(actor, item.doctor)
        return item

    def _outbox_dispatcher(self) -> NotificationDispatcher:
        if self.dispatcher is None:
            raise RuntimeError("QueueCoordinator needs a NotificationDispatcher")
        return self.dispatcher

    # ------------------------------------------------------------------
    # Patient operations
    # ------------------------------------------------------------------

    def join(self, patient: User, doctor_id: int, hospital_id: int) -> QueueItem:
        try:
            with unit_of_work(self.db):
                if self.repo.get_active_for_patient(self.db, patient.id):
                    raise AlreadyQueued("You are already in a queue.")

                doctor = self.db.query(User).filter(User.id == doctor_id).first()
                if not doctor or doctor.role != ROLE_DOCTOR or hospital_id not in doctor.hospital_ids():
                    raise NotFound("Doctor not found or not associated with this hospital.")

                appointment = self.repo.get_same_day_appointment(
                    self.db, patient.id, doctor.id, self.today(), hospital_id
                )
                if appointment and appointment.queue_number:
                    queue_number = appointment.queue_number
                else:
                    queue_number = self.next_ticket(doctor, hospital_id)
                    if appointment:
                        appointment.queue_number = queue_number

                item = self._insert(
                    doctor.id,
                    hospital_id,
                    queue_number,
                    patient_id=patient.id,
                    appointment_id=appointment.id if appointment else None,
                )
        except IntegrityError:
            raise AlreadyQueued("You are already in a queue.") from None
        return item

    def leave(self, patient: User) -> Optional[QueueItem]:
        with unit_of_work(self.db):
            item = self.repo.get_active_for_patient(self.db, patient.id)
            if item is None or item.status not in (QUEUE_WAITING, QUEUE_HELD):
                return None
            item.status = QUEUE_LEFT
            logger.info(f"Patient {patient.id} left queue entry {item.queue_number}")
        return item

    def patient_status(self, patient: User) -> dict:
        """Current queue view for a patient; auto-joins a same-day appointment"""
        item = self.repo.get_active_for_patient(self.db, patient.id)
        if item is None:
            item = self._auto_join(patient)

        upcoming = self.repo.get_upcoming_for_patient(self.db, patient.id)
        window = set(skew_tolerant_dates(self.clock().date()))
        status = {
            "inQueue": False,
            "doctorId": None,
            "doctorName": None,
            "position": None,
            "estimatedWaitTime": 0,
            "status": None,
            "queueNumber": None,
            "nowServingNumber": None,
            "todaysAppointments": [a for a in upcoming if a.date in window],
            "upcomingAppointments": upcoming,
        }
        if item is None:
            return status

        position, wait = self.position_of(item)
        serving = self.repo.get_serving(self.db, item.doctor_id)
        status.update(
            {
                "inQueue": True,
                "doctorId": item.doctor_id,
                "doctorName": item.doctor.name_en if item.doctor else None,
                "position": position,
                "estimatedWaitTime": wait,
                "status": item.status,
                "queueNumber": item.queue_number,
                "nowServingNumber": serving.queue_number if serving else "000",
            }
        )
        return status

    def _auto_join(self, patient: User) -> Optional[QueueItem]:
        dates = skew_tolerant_dates(self.clock().date())
        candidates = self.repo.get_upcoming_on_dates(self.db, patient.id, dates)
        if not candidates:
            return None
        # Prefer today, then the neighbouring days in tolerance order
        candidates.sort(key=lambda a: (dates.index(a.date), a.id))
        appointment = candidates[0]

        try:
            with unit_of_work(self.db):
                if self.repo.get_active_for_patient(self.db, patient.id):
                    return None
                if not appointment.queue_number:
                    appointment.queue_number = self.next_ticket(
                        appointment.doctor, appointment.hospital_id
                    )
                item = self.enqueue_for_appointment(appointment)
        except IntegrityError:
            # A concurrent request created the entry first
            return self.repo.get_active_for_patient(self.db, patient.id)
        logger.info(f"🔄 Auto-joined patient {patient.id} for appointment {appointment.id}")
        return item

    def history(self, patient: User) -> list[QueueItem]:
        return self.repo.get_history(self.db, patient.id)

    # ------------------------------------------------------------------
    # Operator operations
    # ------------------------------------------------------------------

    def call_next(self, actor: User, doctor_id: int) -> Optional[QueueItem]:
        """
        Finish the current patient and promote the earliest Waiting entry.

        Returns the entry now being served, or None when nobody is waiting.
        """
        doctor = self._get_doctor(doctor_id)
        ensure_doctor_access(actor, doctor)

        with notifying_unit_of_work(self.db, self._outbox_dispatcher()) as outbox:
            current = self.repo.get_serving(self.db, doctor.id)
            if current is not None:
                current.status = QUEUE_DONE
                if current.patient_id:
                    self._complete_appointment(current)

            next_item = self.repo.get_first_waiting(self.db, doctor.id)
            if next_item is not None:
                next_item.status = QUEUE_SERVING
                self.db.flush()
                logger.info(f"📣 Doctor {doctor.id} now serving {next_item.queue_number}")

            up_next = self.repo.get_first_waiting(self.db, doctor.id)
            if up_next is not None and up_next.patient_id:
                notify(self.db, outbox, up_next.patient_id, CATEGORY_SYSTEM, next_in_line(doctor))
        return next_item

    def _complete_appointment(self, item: QueueItem) -> None:
        appointment = None
        if item.appointment_id:
            appointment = (
                self.db.query(Appointment)
                .filter(
                    Appointment.id == item.appointment_id,
                    Appointment.status == APPOINTMENT_UPCOMING,
                )
                .first()
            )
        if appointment is None:
            appointment = self.repo.get_same_day_appointment(
                self.db, item.patient_id, item.doctor_id, self.today()
            )
        if appointment is not None:
            appointment.status = APPOINTMENT_COMPLETED
            logger.info(f"✅ Appointment {appointment.id} completed via queue")

    def hold(self, actor: User, item_id: int) -> QueueItem:
        with unit_of_work(self.db):
            item = self._get_item(item_id, actor)
            if item.status not in (QUEUE_WAITING, QUEUE_SERVING):
                raise ValidationError("Cannot hold a patient with this status.")
            item.status = QUEUE_HELD
        return item

    def resume(self, actor: User, item_id: int) -> QueueItem:
        """Back to Waiting with the original check-in time"""
        with unit_of_work(self.db):
            item = self._get_item(item_id, actor)
            if item.status != QUEUE_HELD:
                raise ValidationError("Patient is not on hold.")
            item.status = QUEUE_WAITING
        return item

    def remove(self, actor: User, item_id: int) -> QueueItem:
        with unit_of_work(self.db):
            item = self._get_item(item_id, actor)
            item.status = QUEUE_REMOVED
        return item

    def _walk_in_hospital(self, doctor: User) -> int:
        weekday = Weekday.of(self.clock().date())
        day = WeeklySchedule.from_rows(doctor.availability).for_day(weekday)
        if day.is_available and day.hospital_id:
            return day.hospital_id
        if doctor.primary_hospital_id:
            return doctor.primary_hospital_id
        raise ValidationError(
            "Could not determine the doctor's hospital for today. Please ensure they are "
            "assigned to a hospital and their schedule is set."
        )

    def add_walk_in(self, actor: User, name: str, doctor_id: int) -> QueueItem:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Walk-in name is required.")
        doctor = self._get_doctor(doctor_id)
        ensure_doctor_access(actor, doctor)

        with unit_of_work(self.db):
            hospital_id = self._walk_in_hospital(doctor)
            item = self._insert(
                doctor.id,
                hospital_id,
                self.next_ticket(doctor, hospital_id, prefix=WALK_IN_PREFIX),
                walk_in_name=name,
            )
        return item

    def add_walk_in_by_specialty(self, actor: User, name: str, specialty_id: int) -> QueueItem:
        """Route a walk-in to the least-loaded doctor of a specialty at the caller's hospital"""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Walk-in name is required.")
        hospital_id = actor.primary_hospital_id
        if not hospital_id:
            raise ValidationError("Staff member is not associated with a hospital.")

        doctors = (
            self.db.query(User)
            .join(user_hospitals, user_hospitals.c.user_id == User.id)
            .join(user_specialties, user_specialties.c.user_id == User.id)
            .filter(
                User.role == ROLE_DOCTOR,
                User.is_disabled.is_(False),
                user_hospitals.c.hospital_id == hospital_id,
                user_specialties.c.specialty_id == specialty_id,
            )
            .order_by(User.id.asc())
            .all()
        )
        if not doctors:
            raise NotFound("No doctors available for this specialty in this hospital.")

        # min() keeps the first doctor on ties
        best = min(doctors, key=lambda d: self.repo.count_waiting(self.db, d.id))
        logger.info(f"Walk-in '{name}' routed to doctor {best.id} for specialty {specialty_id}")

        with unit_of_work(self.db):
            item = self._insert(
                best.id,
                hospital_id,
                self.next_ticket(best, hospital_id, prefix=WALK_IN_PREFIX),
                walk_in_name=name,
            )
        return item

    def check_in(self, actor: User, appointment_id: int) -> QueueItem:
        """Turn a booked appointment into a live Waiting entry"""
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise NotFound("Appointment not found")
        ensure_doctor_access(actor, appointment.doctor)
        if appointment.status != APPOINTMENT_UPCOMING:
            raise ValidationError("Only upcoming appointments can be checked in.")

        try:
            with unit_of_work(self.db):
                if self.repo.get_active_for_patient(self.db, appointment.patient_id):
                    raise AlreadyQueued("Patient is already in the queue.")
                if not appointment.queue_number:
                    appointment.queue_number = self.next_ticket(
                        appointment.doctor, appointment.hospital_id
                    )
                item = self._insert(
                    appointment.doctor_id,
                    appointment.hospital_id,
                    appointment.queue_number,
                    patient_id=appointment.patient_id,
                    appointment_id=appointment.id,
                )
        except IntegrityError:
            raise AlreadyQueued("Patient is already in the queue.") from None
        return item

    def doctor_board(self, actor: User, doctor_id: int) -> dict:
        """Serving, Waiting, Held and today's booked appointments for one doctor"""
        doctor = self._get_doctor(doctor_id)
        ensure_doctor_access(actor, doctor)
        appointments = self.repo.get_doctor_appointments_on(self.db, doctor.id, self.today())
        appointments.sort(key=lambda a: time_sort_key(a.time))
        return {
            "doctorId": doctor.id,
            "nowServing": self.repo.get_serving(self.db, doctor.id),
            "waiting": self.repo.get_waiting(self.db, doctor.id),
            "held": self.repo.get_held(self.db, doctor.id),
            "appointments": appointments,
        }
