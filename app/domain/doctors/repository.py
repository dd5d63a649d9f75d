"""Doctor repository - Database operations for schedules and unavailability"""

from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models import ROLE_DOCTOR, DoctorAvailability, UnavailabilityEpisode, User
from ..scheduling.schedule import WeeklySchedule


class DoctorRepository:
    """Repository for doctor schedule database operations"""

    @staticmethod
    def get_doctor(db: Session, doctor_id: int) -> Optional[User]:
        return (
            db.query(User)
            .options(
                selectinload(User.hospitals),
                selectinload(User.availability),
                selectinload(User.unavailability),
            )
            .filter(User.id == doctor_id, User.role == ROLE_DOCTOR)
            .first()
        )

    @staticmethod
    def replace_availability(db: Session, doctor: User, schedule: WeeklySchedule) -> list[DoctorAvailability]:
        """Swap all seven day rows for new ones"""
        db.query(DoctorAvailability).filter(DoctorAvailability.doctor_id == doctor.id).delete(
            synchronize_session=False
        )
        db.flush()
        rows = [
            DoctorAvailability(
                doctor_id=doctor.id,
                weekday=int(day.weekday),
                is_available=day.is_available,
                start_time=day.start_time,
                end_time=day.end_time,
                hospital_id=day.hospital_id,
            )
            for day in schedule.days
        ]
        db.add_all(rows)
        db.flush()
        db.expire(doctor, ["availability"])
        return rows

    @staticmethod
    def add_episode(db: Session, **fields) -> UnavailabilityEpisode:
        episode = UnavailabilityEpisode(**fields)
        db.add(episode)
        db.flush()
        return episode

    @staticmethod
    def delete_open_episodes(db: Session, doctor_id: int, today: str) -> int:
        """Remove episodes that have not ended before ``today``"""
        count = (
            db.query(UnavailabilityEpisode)
            .filter(
                UnavailabilityEpisode.doctor_id == doctor_id,
                UnavailabilityEpisode.end_date >= today,
            )
            .delete(synchronize_session=False)
        )
        db.flush()
        return count
