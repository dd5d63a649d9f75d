"""Queue repository - Database operations for live queue entries"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ...models import (
    ACTIVE_QUEUE_STATUSES,
    APPOINTMENT_UPCOMING,
    QUEUE_HELD,
    QUEUE_SERVING,
    QUEUE_WAITING,
    Appointment,
    QueueItem,
)


class QueueRepository:
    """Repository for queue item database operations"""

    @staticmethod
    def get_item(db: Session, item_id: int, for_update: bool = False) -> Optional[QueueItem]:
        query = db.query(QueueItem).filter(QueueItem.id == item_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_active_for_patient(db: Session, patient_id: int) -> Optional[QueueItem]:
        return (
            db.query(QueueItem)
            .filter(
                QueueItem.patient_id == patient_id,
                QueueItem.status.in_(ACTIVE_QUEUE_STATUSES),
            )
            .first()
        )

    @staticmethod
    def get_waiting(db: Session, doctor_id: int) -> list[QueueItem]:
        """FIFO by check-in time; ties fall back to insertion order"""
        return (
            db.query(QueueItem)
            .options(joinedload(QueueItem.patient))
            .filter(QueueItem.doctor_id == doctor_id, QueueItem.status == QUEUE_WAITING)
            .order_by(QueueItem.check_in_time.asc(), QueueItem.id.asc())
            .all()
        )

    @staticmethod
    def get_first_waiting(db: Session, doctor_id: int) -> Optional[QueueItem]:
        return (
            db.query(QueueItem)
            .filter(QueueItem.doctor_id == doctor_id, QueueItem.status == QUEUE_WAITING)
            .order_by(QueueItem.check_in_time.asc(), QueueItem.id.asc())
            .with_for_update()
            .first()
        )

    @staticmethod
    def get_serving(db: Session, doctor_id: int) -> Optional[QueueItem]:
        return (
            db.query(QueueItem)
            .filter(QueueItem.doctor_id == doctor_id, QueueItem.status == QUEUE_SERVING)
            .with_for_update()
            .first()
        )

    @staticmethod
    def get_held(db: Session, doctor_id: int) -> list[QueueItem]:
        return (
            db.query(QueueItem)
            .options(joinedload(QueueItem.patient))
            .filter(QueueItem.doctor_id == doctor_id, QueueItem.status == QUEUE_HELD)
            .order_by(QueueItem.updated_at.desc(), QueueItem.id.desc())
            .all()
        )

    @staticmethod
    def count_waiting(db: Session, doctor_id: int) -> int:
        return (
            db.query(func.count(QueueItem.id))
            .filter(QueueItem.doctor_id == doctor_id, QueueItem.status == QUEUE_WAITING)
            .scalar()
        )

    @staticmethod
    def count_for_day(db: Session, doctor_id: int, hospital_id: int, day_start: datetime) -> int:
        return (
            db.query(func.count(QueueItem.id))
            .filter(
                QueueItem.doctor_id == doctor_id,
                QueueItem.hospital_id == hospital_id,
                QueueItem.check_in_time >= day_start,
                QueueItem.check_in_time < day_start + timedelta(days=1),
            )
            .scalar()
        )

    @staticmethod
    def get_history(db: Session, patient_id: int) -> list[QueueItem]:
        return (
            db.query(QueueItem)
            .options(joinedload(QueueItem.doctor), joinedload(QueueItem.hospital))
            .filter(QueueItem.patient_id == patient_id)
            .order_by(QueueItem.check_in_time.desc(), QueueItem.id.desc())
            .all()
        )

    @staticmethod
    def get_live_for_appointment(db: Session, appointment: Appointment, today: str) -> list[QueueItem]:
        """Waiting/Held entries linked to ``appointment``.

        Unlinked entries of the same patient and doctor only count when the
        appointment is for ``today``; the queue holds nothing but today's visits.
        """
        match = QueueItem.appointment_id == appointment.id
        if appointment.date == today:
            match = match | (
                QueueItem.appointment_id.is_(None)
                & (QueueItem.patient_id == appointment.patient_id)
                & (QueueItem.doctor_id == appointment.doctor_id)
            )
        return db.query(QueueItem).filter(QueueItem.status.in_((QUEUE_WAITING, QUEUE_HELD)), match).all()

    @staticmethod
    def add_item(db: Session, **fields) -> QueueItem:
        item = QueueItem(**fields)
        db.add(item)
        db.flush()
        return item

    @staticmethod
    def get_upcoming_on_dates(db: Session, patient_id: int, dates: list[str]) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(
                Appointment.patient_id == patient_id,
                Appointment.status == APPOINTMENT_UPCOMING,
                Appointment.date.in_(dates),
            )
            .all()
        )

    @staticmethod
    def get_upcoming_for_patient(db: Session, patient_id: int) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.doctor), joinedload(Appointment.hospital))
            .filter(
                Appointment.patient_id == patient_id,
                Appointment.status == APPOINTMENT_UPCOMING,
            )
            .order_by(Appointment.date.asc(), Appointment.id.asc())
            .all()
        )

    @staticmethod
    def get_doctor_appointments_on(db: Session, doctor_id: int, date: str) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.patient), joinedload(Appointment.service_type))
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.date == date,
                Appointment.status == APPOINTMENT_UPCOMING,
            )
            .all()
        )

    @staticmethod
    def get_same_day_appointment(
        db: Session, patient_id: int, doctor_id: int, date: str, hospital_id: Optional[int] = None
    ) -> Optional[Appointment]:
        query = db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
            Appointment.doctor_id == doctor_id,
            Appointment.date == date,
            Appointment.status == APPOINTMENT_UPCOMING,
        )
        if hospital_id is not None:
            query = query.filter(Appointment.hospital_id == hospital_id)
        return query.order_by(Appointment.id.asc()).first()
