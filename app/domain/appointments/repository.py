"""Appointment repository - Database operations for bookings"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ...models import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_COMPLETED,
    APPOINTMENT_NO_SHOW,
    APPOINTMENT_UPCOMING,
    Appointment,
)

HISTORY_STATUSES = (APPOINTMENT_COMPLETED, APPOINTMENT_CANCELLED, APPOINTMENT_NO_SHOW)


def _with_relations(query):
    return query.options(
        joinedload(Appointment.doctor),
        joinedload(Appointment.patient),
        joinedload(Appointment.hospital),
        joinedload(Appointment.service_type),
    )


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get(db: Session, appointment_id: int, for_update: bool = False) -> Optional[Appointment]:
        query = db.query(Appointment).filter(Appointment.id == appointment_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def add(db: Session, **fields) -> Appointment:
        appointment = Appointment(**fields)
        db.add(appointment)
        db.flush()
        return appointment

    @staticmethod
    def find_exact(
        db: Session, patient_id: int, doctor_id: int, date: str, time: str
    ) -> Optional[Appointment]:
        return (
            _with_relations(db.query(Appointment))
            .filter(
                Appointment.patient_id == patient_id,
                Appointment.doctor_id == doctor_id,
                Appointment.date == date,
                Appointment.time == time,
                Appointment.status == APPOINTMENT_UPCOMING,
            )
            .first()
        )

    @staticmethod
    def get_patient_upcoming_on(db: Session, patient_id: int, date: str) -> list[Appointment]:
        return (
            _with_relations(db.query(Appointment))
            .filter(
                Appointment.patient_id == patient_id,
                Appointment.date == date,
                Appointment.status == APPOINTMENT_UPCOMING,
            )
            .order_by(Appointment.id.asc())
            .all()
        )

    @staticmethod
    def count_for_doctor_on(
        db: Session, doctor_id: int, date: str, exclude_id: Optional[int] = None
    ) -> int:
        query = db.query(func.count(Appointment.id)).filter(
            Appointment.doctor_id == doctor_id, Appointment.date == date
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.scalar()

    @staticmethod
    def get_numbered_same_day(
        db: Session, patient_id: int, doctor_id: int, date: str, exclude_id: Optional[int] = None
    ) -> Optional[Appointment]:
        """Another of the patient's live appointments with this doctor that day already holding a ticket"""
        query = db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
            Appointment.doctor_id == doctor_id,
            Appointment.date == date,
            Appointment.status == APPOINTMENT_UPCOMING,
            Appointment.queue_number.isnot(None),
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.id.asc()).first()

    @staticmethod
    def get_doctor_upcoming_between(
        db: Session, doctor_id: int, start_date: str, end_date: str
    ) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.status == APPOINTMENT_UPCOMING,
                Appointment.date >= start_date,
                Appointment.date <= end_date,
            )
            .with_for_update()
            .all()
        )

    # ------------------------------------------------------------------
    # Listing queries
    # ------------------------------------------------------------------

    @staticmethod
    def list_for_patient(db: Session, patient_id: int) -> list[Appointment]:
        return _with_relations(db.query(Appointment)).filter(Appointment.patient_id == patient_id).all()

    @staticmethod
    def list_for_doctor(db: Session, doctor_id: int) -> list[Appointment]:
        return _with_relations(db.query(Appointment)).filter(Appointment.doctor_id == doctor_id).all()

    @staticmethod
    def list_for_hospital(db: Session, hospital_id: int) -> list[Appointment]:
        return (
            _with_relations(db.query(Appointment))
            .filter(Appointment.hospital_id == hospital_id)
            .all()
        )

    @staticmethod
    def list_all(db: Session) -> list[Appointment]:
        return _with_relations(db.query(Appointment)).all()

    @staticmethod
    def list_doctor_day(db: Session, doctor_id: int, date: str) -> list[Appointment]:
        return (
            _with_relations(db.query(Appointment))
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.date == date,
                Appointment.status != APPOINTMENT_CANCELLED,
            )
            .all()
        )

    @staticmethod
    def list_upcoming_from(db: Session, patient_id: int, today: str) -> list[Appointment]:
        return (
            _with_relations(db.query(Appointment))
            .filter(
                Appointment.patient_id == patient_id,
                Appointment.date >= today,
                Appointment.status == APPOINTMENT_UPCOMING,
            )
            .all()
        )

    @staticmethod
    def list_history(db: Session, patient_id: int) -> list[Appointment]:
        return (
            _with_relations(db.query(Appointment))
            .filter(
                Appointment.patient_id == patient_id,
                Appointment.status.in_(HISTORY_STATUSES),
            )
            .all()
        )
