"""
Appointment service - booking and the appointment lifecycle

Upcoming -> Completed | Cancelled | NoShow | DoctorCancelled
DoctorCancelled carries a resolution: Pending -> Rescheduled | Refunded | Redirected

Every transition that moves money runs in one unit of work together with the
ledger writes, the queue side effects and the in-app notification rows.
External notifications are released only after the commit succeeds.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ...auth import ensure_appointment_access, ensure_doctor_access, ensure_hospital_access
from ...config import BOOKING_CONFLICT_BUFFER_MINUTES
from ...models import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_COMPLETED,
    APPOINTMENT_DOCTOR_CANCELLED,
    APPOINTMENT_NO_SHOW,
    APPOINTMENT_UPCOMING,
    CATEGORY_APPOINTMENT_FEE,
    CATEGORY_DEPOSIT,
    CATEGORY_REFUND,
    CREDIT,
    DEBIT,
    RESOLUTION_PENDING,
    RESOLUTION_REDIRECTED,
    RESOLUTION_REFUNDED,
    RESOLUTION_RESCHEDULED,
    ROLE_DOCTOR,
    ROLE_PATIENT,
    ROLE_SUPER_ADMIN,
    STAFF_ROLES,
    Appointment,
    Hospital,
    ServiceType,
    User,
    user_hospitals,
    user_specialties,
)
from ...notification_templates import (
    REMINDER_OPTION_TEXT,
    appointment_cancelled,
    appointment_confirmed,
    appointment_rescheduled,
    doctor_apology,
    patient_reminder,
    resolution_refunded,
)
from ...services.notification_service import (
    CATEGORY_APPOINTMENT,
    CATEGORY_REMINDER,
    NotificationDispatcher,
    Outbox,
    notify,
    notifying_unit_of_work,
)
from ...shared.exceptions import (
    AlreadyResolved,
    Conflict,
    NotAvailable,
    NotFound,
    Unauthorized,
    ValidationError,
)
from ...shared.timeutils import (
    Weekday,
    local_now,
    normalize_date,
    normalize_time,
    parse_date,
    parse_time_to_minutes,
    time_sort_key,
)
from ..ledger.service import CENT, LedgerService
from ..queue.service import QueueCoordinator
from ..queue.tickets import format_ticket, ticket_prefix
from ..scheduling.schedule import DaySchedule, WeeklySchedule
from ..scheduling.slot_allocator import SlotAllocator, SlotOffer
from .repository import AppointmentRepository

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = "This time slot was just booked by someone else. Please select another time."

RESOLUTION_ACTIONS = ("Refund", "Redirect", "Reschedule")


def _chronological(appointment: Appointment) -> tuple:
    return appointment.date, time_sort_key(appointment.time)


def _clean_date(value: str) -> str:
    try:
        return normalize_date(value)
    except ValueError as e:
        raise ValidationError(str(e)) from None


def _clean_time(value: str) -> str:
    try:
        return normalize_time(value)
    except ValueError as e:
        raise ValidationError(str(e)) from None


def _replacement_specialties(appointment: Appointment) -> set[int]:
    if appointment.service_type and appointment.service_type.specialty_id:
        return {appointment.service_type.specialty_id}
    return {s.id for s in appointment.doctor.specialties}


def _working_day(doctor: User, hospital_id: int, date: str) -> Optional[DaySchedule]:
    """The doctor's schedule for ``date`` if they work it at ``hospital_id``, else None"""
    day = WeeklySchedule.from_rows(doctor.availability).for_day(Weekday.of(parse_date(date)))
    if not day.serves(hospital_id, doctor.hospital_ids()):
        return None
    if any(ep.covers(date) for ep in doctor.unavailability):
        return None
    return day


def _conflict_details(appointment: Appointment, diff_minutes: int, duplicate: bool) -> dict:
    doctor, service = appointment.doctor, appointment.service_type
    return {
        "isDuplicate": duplicate,
        "doctorId": appointment.doctor_id,
        "appointmentTypeId": appointment.service_type_id,
        "doctorName": {"en": doctor.name_en, "ar": doctor.name_ar or doctor.name_en}
        if doctor
        else {"en": "Doctor", "ar": "طبيب"},
        "appointmentType": {"en": service.name_en, "ar": service.name_ar or service.name_en}
        if service
        else {"en": "Service", "ar": "خدمة"},
        "time": appointment.time,
        "date": appointment.date,
        "diffMinutes": diff_minutes,
    }


class AppointmentService:
    """Service layer for the appointment state machine"""

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = local_now,
        conflict_buffer_minutes: int = BOOKING_CONFLICT_BUFFER_MINUTES,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock
        self.conflict_buffer_minutes = conflict_buffer_minutes
        self.repo = AppointmentRepository()
        self.ledger = LedgerService(db, dispatcher, clock)
        self.queue = QueueCoordinator(db, dispatcher, clock)
        self.slots = SlotAllocator(db, clock)

    def _outbox_dispatcher(self) -> NotificationDispatcher:
        if self.dispatcher is None:
            raise RuntimeError("AppointmentService needs a NotificationDispatcher")
        return self.dispatcher

    def today(self) -> str:
        return self.clock().date().isoformat()

    # ========================================================================
    # READS
    # ========================================================================

    def get_appointment(self, actor: User, appointment_id: int) -> Appointment:
        appointment = self.repo.get(self.db, appointment_id)
        if not appointment:
            raise NotFound("Appointment not found")
        ensure_appointment_access(actor, appointment)
        return appointment

    def list_appointments(self, actor: User) -> list[Appointment]:
        """Role-scoped listing, newest first"""
        if actor.role == ROLE_PATIENT:
            appointments = self.repo.list_for_patient(self.db, actor.id)
        elif actor.role == ROLE_DOCTOR:
            appointments = self.repo.list_for_doctor(self.db, actor.id)
        elif actor.role == ROLE_SUPER_ADMIN:
            appointments = self.repo.list_all(self.db)
        else:
            hospital_id = actor.primary_hospital_id
            if not hospital_id:
                return []
            appointments = self.repo.list_for_hospital(self.db, hospital_id)
        return sorted(appointments, key=_chronological, reverse=True)

    def doctor_today(self, actor: User, doctor_id: Optional[int] = None) -> list[Appointment]:
        doctor_id = doctor_id or actor.id
        if doctor_id != actor.id:
            doctor = self.db.query(User).filter(User.id == doctor_id, User.role == ROLE_DOCTOR).first()
            if not doctor:
                raise NotFound("Doctor not found.")
            ensure_doctor_access(actor, doctor)
        elif actor.role != ROLE_DOCTOR:
            raise ValidationError("doctorId is required")
        appointments = self.repo.list_doctor_day(self.db, doctor_id, self.today())
        return sorted(appointments, key=_chronological)

    def upcoming(self, patient: User) -> list[Appointment]:
        return sorted(self.repo.list_upcoming_from(self.db, patient.id, self.today()), key=_chronological)

    def history(self, patient: User) -> list[Appointment]:
        return sorted(self.repo.list_history(self.db, patient.id), key=_chronological, reverse=True)

    def next_slot(self, doctor_id: int, date: str, service_type_id: int, hospital_id: int) -> SlotOffer:
        return self.slots.compute_next_slot(doctor_id, date, service_type_id, hospital_id)

    # ========================================================================
    # BOOKING
    # ========================================================================

    def _booking_patient_id(self, actor: User, patient_id: Optional[int]) -> int:
        if actor.role in STAFF_ROLES:
            if not patient_id:
                raise ValidationError("Patient ID is required for staff booking.")
            return patient_id
        if actor.role != ROLE_PATIENT:
            raise Unauthorized("Not authorized to book appointments.")
        return actor.id

    def check_conflicts(
        self, patient_id: int, doctor_id: int, date: str, time: str, force: bool = False
    ) -> None:
        """
        Raise Conflict for an exact duplicate (always) or, unless ``force``, for
        another live booking of the same patient within the buffer that day.
        """
        existing = self.repo.find_exact(self.db, patient_id, doctor_id, date, time)
        if existing:
            raise Conflict("Duplicate Appointment", _conflict_details(existing, 0, duplicate=True))
        if force:
            return

        requested = parse_time_to_minutes(time)
        for appointment in self.repo.get_patient_upcoming_on(self.db, patient_id, date):
            try:
                diff = abs(requested - parse_time_to_minutes(appointment.time))
            except ValueError:
                logger.warning(f"⚠️ Unparseable time '{appointment.time}' on appointment {appointment.id}")
                continue
            if diff < self.conflict_buffer_minutes:
                logger.info(
                    f"Schedule conflict for patient {patient_id}: {time} vs {appointment.time} ({diff} min)"
                )
                raise Conflict("Schedule Conflict", _conflict_details(appointment, diff, duplicate=False))

    def _ticket_for(
        self, patient_id: int, doctor: User, date: str, exclude_id: Optional[int] = None
    ) -> str:
        """Reuse a same-day ticket for this patient and doctor, else the next in the doctor's day"""
        same_day = self.repo.get_numbered_same_day(self.db, patient_id, doctor.id, date, exclude_id)
        if same_day:
            return same_day.queue_number
        count = self.repo.count_for_doctor_on(self.db, doctor.id, date, exclude_id)
        return format_ticket(ticket_prefix(doctor), count + 1)

    def book(
        self,
        actor: User,
        doctor_id: int,
        hospital_id: int,
        service_type_id: int,
        date: str,
        time: str,
        patient_id: Optional[int] = None,
        force: bool = False,
        cash_payment: bool = False,
        notes: Optional[str] = None,
    ) -> Appointment:
        """
        Book, pay for and (when dated today) queue an appointment in one unit of work.

        Raises:
            Conflict: exact duplicate, soft conflict without ``force``, or a lost slot race
            InsufficientFunds: wallet cannot cover the fee (nothing is written)
            NotAvailable: doctor inside an unavailability episode
        """
        target_id = self._booking_patient_id(actor, patient_id)
        if actor.role in STAFF_ROLES:
            ensure_hospital_access(actor, hospital_id)
        date, time = _clean_date(date), _clean_time(time)

        self.check_conflicts(target_id, doctor_id, date, time, force)

        try:
            with notifying_unit_of_work(self.db, self._outbox_dispatcher()) as outbox:
                service_type = self.db.query(ServiceType).filter(ServiceType.id == service_type_id).first()
                doctor = self.db.query(User).filter(User.id == doctor_id, User.role == ROLE_DOCTOR).first()
                hospital = self.db.query(Hospital).filter(Hospital.id == hospital_id).first()
                patient = self.db.query(User).filter(User.id == target_id).first()

                if not service_type:
                    raise NotFound("Invalid appointment type specified.")
                if not doctor:
                    raise NotFound("Specified doctor not found.")
                if not hospital:
                    raise NotFound("Specified hospital not found.")
                if not patient:
                    raise NotFound("Specified patient not found.")
                if service_type.is_disabled:
                    raise ValidationError("This appointment type is no longer offered.")
                if doctor.is_disabled:
                    raise ValidationError("The selected doctor's account has been disabled.")
                if patient.is_disabled:
                    raise ValidationError("The patient's account has been disabled.")
                if any(ep.covers(date) for ep in doctor.unavailability):
                    raise NotAvailable("The selected doctor is currently unavailable during this period.")
                if hospital.id not in doctor.hospital_ids():
                    raise ValidationError("Selected doctor does not work at this hospital.")

                cost = Decimal(service_type.cost or 0).quantize(CENT)

                if cash_payment and actor.role in STAFF_ROLES and cost > 0:
                    self.ledger.apply_transaction(
                        patient.id,
                        cost,
                        CREDIT,
                        CATEGORY_DEPOSIT,
                        "Cash payment collected at hospital counter for appointment.",
                        f"CASH_{int(self.clock().timestamp() * 1000)}",
                        hospital_id=hospital.id,
                        unit_of_work=self.db,
                    )

                appointment = self.repo.add(
                    self.db,
                    patient_id=patient.id,
                    doctor_id=doctor.id,
                    hospital_id=hospital.id,
                    service_type_id=service_type.id,
                    date=date,
                    time=time,
                    cost=cost,
                    notes=notes,
                    status=APPOINTMENT_UPCOMING,
                    queue_number=self._ticket_for(patient.id, doctor, date),
                )

                if cost > 0:
                    self.ledger.apply_transaction(
                        patient.id,
                        cost,
                        DEBIT,
                        CATEGORY_APPOINTMENT_FEE,
                        f"Fee for {service_type.name_en} with Dr. {doctor.name_en} at {hospital.name_en}",
                        appointment.id,
                        hospital_id=hospital.id,
                        unit_of_work=self.db,
                    )

                if date == self.today():
                    self.queue.enqueue_for_appointment(appointment)

                notify(self.db, outbox, patient.id, CATEGORY_APPOINTMENT, appointment_confirmed(appointment))
        except IntegrityError:
            logger.warning(f"⚠️ Slot race lost for doctor {doctor_id} on {date} at {time}")
            raise Conflict(SLOT_TAKEN_MESSAGE) from None

        logger.info(
            f"✅ Appointment {appointment.id} booked: patient {appointment.patient_id}, "
            f"doctor {appointment.doctor_id}, {appointment.date} {appointment.time} ({appointment.queue_number})"
        )
        return appointment

    # ========================================================================
    # STATUS CHANGES
    # ========================================================================

    def _load_for_update(self, appointment_id: int) -> Appointment:
        appointment = self.repo.get(self.db, appointment_id, for_update=True)
        if not appointment:
            raise NotFound("Appointment not found.")
        return appointment

    def update_status(self, actor: User, appointment_id: int, status: str) -> Appointment:
        """Patients may cancel their own bookings; hospital staff may also complete or mark no-show"""
        if status not in (APPOINTMENT_CANCELLED, APPOINTMENT_COMPLETED, APPOINTMENT_NO_SHOW):
            raise ValidationError(f"Invalid status: {status}")

        with notifying_unit_of_work(self.db, self._outbox_dispatcher()) as outbox:
            appointment = self._load_for_update(appointment_id)

            if actor.role == ROLE_PATIENT:
                if appointment.patient_id != actor.id:
                    raise Unauthorized("Not authorized to update this appointment.")
                if status != APPOINTMENT_CANCELLED:
                    raise Unauthorized("Patients can only cancel appointments.")
            elif actor.role in STAFF_ROLES:
                ensure_hospital_access(actor, appointment.hospital_id)
            else:
                raise Unauthorized("Not authorized to update this appointment.")

            if appointment.status != APPOINTMENT_UPCOMING:
                raise ValidationError(f"Cannot change an appointment that is {appointment.status}.")

            if status == APPOINTMENT_CANCELLED:
                self._cancel(appointment, outbox)
            else:
                appointment.status = status
                logger.info(f"Appointment {appointment.id} marked {status} by user {actor.id}")
        return appointment

    def cancel(self, actor: User, appointment_id: int) -> Appointment:
        return self.update_status(actor, appointment_id, APPOINTMENT_CANCELLED)

    def _cancel(self, appointment: Appointment, outbox: Outbox) -> None:
        """Cancel with the hospital's refund policy, refunding at most once"""
        appointment.status = APPOINTMENT_CANCELLED
        refund = Decimal("0")

        if not appointment.is_refunded:
            percentage = appointment.hospital.refund_policy_percentage if appointment.hospital else 100
            refund = (Decimal(appointment.cost) * Decimal(percentage) / 100).quantize(CENT)
            if refund > 0:
                service = appointment.service_type.name_en if appointment.service_type else "appointment"
                self.ledger.apply_transaction(
                    appointment.patient_id,
                    refund,
                    CREDIT,
                    CATEGORY_REFUND,
                    f"Refund for cancelled {service} with Dr. {appointment.doctor.name_en} "
                    f"at {appointment.hospital.name_en}",
                    appointment.id,
                    hospital_id=appointment.hospital_id,
                    unit_of_work=self.db,
                )
            appointment.is_refunded = True

        self.queue.release_for_appointment(appointment)
        notify(
            self.db,
            outbox,
            appointment.patient_id,
            CATEGORY_APPOINTMENT,
            appointment_cancelled(appointment, refund),
        )
        logger.info(f"Appointment {appointment.id} cancelled, refund {refund}")

    def doctor_cancel(self, actor: User, appointment_id: int) -> Appointment:
        with notifying_unit_of_work(self.db, self._outbox_dispatcher()) as outbox:
            appointment = self._load_for_update(appointment_id)
            if actor.role == ROLE_DOCTOR:
                if appointment.doctor_id != actor.id:
                    raise Unauthorized("Not authorized to cancel this appointment")
            elif actor.role in STAFF_ROLES:
                ensure_hospital_access(actor, appointment.hospital_id)
            else:
                raise Unauthorized("Not authorized to cancel this appointment")

            if appointment.status != APPOINTMENT_UPCOMING:
                raise ValidationError("Only upcoming appointments can be cancelled by the doctor.")
            self.mark_doctor_cancelled(appointment, outbox)
        return appointment

    def mark_doctor_cancelled(self, appointment: Appointment, outbox: Outbox) -> None:
        """DoctorCancelled/Pending plus an apology, inside the caller's unit of work"""
        appointment.status = APPOINTMENT_DOCTOR_CANCELLED
        appointment.cancellation_resolution = RESOLUTION_PENDING
        self.queue.release_for_appointment(appointment)
        notify(self.db, outbox, appointment.patient_id, CATEGORY_APPOINTMENT, doctor_apology(appointment))
        logger.info(f"🩺 Appointment {appointment.id} cancelled by doctor {appointment.doctor_id}")

    # ========================================================================
    # DOCTOR-CANCELLATION RESOLUTION
    # ========================================================================

    def find_replacements(self, actor: User, appointment_id: int) -> list[dict]:
        """Other doctors of the same specialty working that weekday at the same hospital"""
        appointment = self.get_appointment(actor, appointment_id)

        specialty_ids = _replacement_specialties(appointment)
        if not specialty_ids:
            return []

        candidates = (
            self.db.query(User)
            .options(selectinload(User.availability), selectinload(User.unavailability))
            .join(user_hospitals, user_hospitals.c.user_id == User.id)
            .join(user_specialties, user_specialties.c.user_id == User.id)
            .filter(
                User.role == ROLE_DOCTOR,
                User.id != appointment.doctor_id,
                User.is_active.is_(True),
                User.is_disabled.is_(False),
                user_hospitals.c.hospital_id == appointment.hospital_id,
                user_specialties.c.specialty_id.in_(specialty_ids),
            )
            .distinct()
            .order_by(User.id.asc())
            .all()
        )

        suggestions = []
        for doctor in candidates:
            day = _working_day(doctor, appointment.hospital_id, appointment.date)
            if day is None:
                continue
            suggestions.append({"doctor": doctor, "startTime": day.start_time, "endTime": day.end_time})
        return suggestions

    def resolve_cancellation(
        self,
        actor: User,
        appointment_id: int,
        action: str,
        new_doctor_id: Optional[int] = None,
        new_date: Optional[str] = None,
        new_time: Optional[str] = None,
    ) -> Appointment:
        """Apply the patient's choice for a doctor-cancelled appointment, exactly once"""
        if action not in RESOLUTION_ACTIONS:
            raise ValidationError("Invalid action")

        try:
            with notifying_unit_of_work(self.db, self._outbox_dispatcher()) as outbox:
                appointment = self._load_for_update(appointment_id)
                if appointment.patient_id != actor.id:
                    raise Unauthorized("Not authorized")
                if appointment.cancellation_resolution not in (None, RESOLUTION_PENDING):
                    raise AlreadyResolved("Resolution already processed")
                if appointment.status != APPOINTMENT_DOCTOR_CANCELLED:
                    raise ValidationError("This appointment is not cancelled by doctor")

                if action == "Refund":
                    self._resolve_refund(appointment, outbox)
                elif action == "Redirect":
                    self._resolve_redirect(appointment, outbox, new_doctor_id, new_date, new_time)
                else:
                    if not new_date or not new_time:
                        raise ValidationError("New slot (date and time) is required")
                    self._move(appointment, _clean_date(new_date), _clean_time(new_time), rejoin=True)
                    appointment.status = APPOINTMENT_UPCOMING
                    appointment.cancellation_resolution = RESOLUTION_RESCHEDULED
                    notify(
                        self.db,
                        outbox,
                        appointment.patient_id,
                        CATEGORY_APPOINTMENT,
                        appointment_rescheduled(appointment),
                    )
        except IntegrityError:
            raise Conflict(SLOT_TAKEN_MESSAGE) from None

        logger.info(
            f"✅ Appointment {appointment.id} resolved by patient {actor.id}: "
            f"{appointment.cancellation_resolution}"
        )
        return appointment

    def _resolve_refund(self, appointment: Appointment, outbox: Outbox) -> None:
        # Full apology refund regardless of the hospital policy
        cost = Decimal(appointment.cost).quantize(CENT)
        if cost > 0:
            self.ledger.apply_transaction(
                appointment.patient_id,
                cost,
                CREDIT,
                CATEGORY_REFUND,
                f"Full refund for doctor apology: {appointment.doctor.name_en}",
                appointment.id,
                hospital_id=appointment.hospital_id,
                unit_of_work=self.db,
            )
        appointment.status = APPOINTMENT_CANCELLED
        appointment.is_refunded = True
        appointment.cancellation_resolution = RESOLUTION_REFUNDED
        notify(self.db, outbox, appointment.patient_id, CATEGORY_APPOINTMENT, resolution_refunded(appointment))

    def _resolve_redirect(
        self,
        appointment: Appointment,
        outbox: Outbox,
        new_doctor_id: Optional[int],
        new_date: Optional[str],
        new_time: Optional[str],
    ) -> None:
        if not new_doctor_id:
            raise ValidationError("New doctor ID is required for redirection")
        doctor = self.db.query(User).filter(User.id == new_doctor_id, User.role == ROLE_DOCTOR).first()
        if not doctor:
            raise NotFound("Doctor not found.")
        if doctor.is_disabled or not doctor.is_active:
            raise ValidationError("The selected doctor's account has been disabled.")
        if appointment.hospital_id not in doctor.hospital_ids():
            raise ValidationError("Selected doctor does not work at this hospital.")
        specialty_ids = _replacement_specialties(appointment)
        if specialty_ids and not specialty_ids & {s.id for s in doctor.specialties}:
            raise ValidationError("Selected doctor does not practice this specialty.")

        date = _clean_date(new_date) if new_date else appointment.date
        time = _clean_time(new_time) if new_time else appointment.time
        if any(ep.covers(date) for ep in doctor.unavailability):
            raise NotAvailable("The selected doctor is currently unavailable during this period.")
        if _working_day(doctor, appointment.hospital_id, date) is None:
            raise NotAvailable("The selected doctor does not work at this hospital on that day.")

        self._move(appointment, date, time, doctor=doctor, rejoin=True)
        appointment.status = APPOINTMENT_UPCOMING
        appointment.cancellation_resolution = RESOLUTION_REDIRECTED
        notify(self.db, outbox, appointment.patient_id, CATEGORY_APPOINTMENT, appointment_rescheduled(appointment))

    # ========================================================================
    # RESCHEDULE AND REMINDERS
    # ========================================================================

    def _move(
        self,
        appointment: Appointment,
        date: str,
        time: str,
        doctor: Optional[User] = None,
        rejoin: bool = False,
    ) -> None:
        """
        Move an appointment to a new day, time or doctor inside the caller's unit of work.

        A new day (or doctor) gets a fresh ticket; live queue membership leaves
        today's line and a booking landing on today joins it. ``rejoin`` also
        queues a same-day booking that is coming back from a doctor cancellation.
        """
        today = self.today()
        old_date = appointment.date
        doctor_changed = doctor is not None and doctor.id != appointment.doctor_id
        date_changed = date != old_date

        if date_changed or doctor_changed:
            if old_date == today:
                self.queue.release_for_appointment(appointment, delete=True)
            if doctor_changed:
                appointment.doctor_id = doctor.id
                appointment.doctor = doctor
            appointment.queue_number = self._ticket_for(
                appointment.patient_id, appointment.doctor, date, exclude_id=appointment.id
            )

        appointment.date = date
        appointment.time = time
        self.db.flush()

        if date == today and (date_changed or doctor_changed or rejoin):
            self.queue.enqueue_for_appointment(appointment)

    def reschedule(self, actor: User, appointment_id: int, date: str, time: str) -> Appointment:
        date, time = _clean_date(date), _clean_time(time)
        try:
            with notifying_unit_of_work(self.db, self._outbox_dispatcher()) as outbox:
                appointment = self._load_for_update(appointment_id)
                ensure_appointment_access(actor, appointment)
                if actor.role == ROLE_DOCTOR:
                    raise Unauthorized("Doctors cannot reschedule appointments.")
                if appointment.status != APPOINTMENT_UPCOMING:
                    raise ValidationError("Only upcoming appointments can be rescheduled.")
                if any(ep.covers(date) for ep in appointment.doctor.unavailability):
                    raise NotAvailable("The selected doctor is currently unavailable during this period.")

                self._move(appointment, date, time)
                notify(
                    self.db,
                    outbox,
                    appointment.patient_id,
                    CATEGORY_APPOINTMENT,
                    appointment_rescheduled(appointment),
                )
        except IntegrityError:
            raise Conflict(SLOT_TAKEN_MESSAGE) from None

        logger.info(f"Appointment {appointment.id} rescheduled to {appointment.date} {appointment.time}")
        return appointment

    def set_reminder(self, patient: User, appointment_id: int, option: str) -> Appointment:
        """One-off patient reminder; sent right away and never repeated"""
        if option not in REMINDER_OPTION_TEXT:
            raise ValidationError("Invalid reminder option.")

        with notifying_unit_of_work(self.db, self._outbox_dispatcher()) as outbox:
            appointment = self._load_for_update(appointment_id)
            if appointment.patient_id != patient.id:
                raise Unauthorized("You are not authorized for this appointment.")
            if appointment.status != APPOINTMENT_UPCOMING:
                raise ValidationError("Can only set reminders for upcoming appointments.")
            if appointment.reminder_set:
                raise ValidationError("A reminder has already been set for this appointment.")

            notify(self.db, outbox, patient.id, CATEGORY_REMINDER, patient_reminder(appointment, option))
            appointment.reminder_set = True
            appointment.reminder_type = option
        return appointment
