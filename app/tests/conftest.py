import os
from datetime import datetime, timedelta
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("REMINDER_SCHEDULER_ENABLED", "false")
os.environ.setdefault("CLINIC_TIMEZONE", "Africa/Tripoli")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.domain.ledger.service import LedgerService
from app.models import (
    CATEGORY_DEPOSIT,
    CREDIT,
    ROLE_DOCTOR,
    ROLE_HOSPITAL_MANAGER,
    ROLE_HOSPITAL_STAFF,
    ROLE_PATIENT,
    ROLE_SUPER_ADMIN,
    DoctorAvailability,
    Hospital,
    ServiceType,
    Specialty,
    User,
)
from app.services.notification_service import NotificationDispatcher

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Tuesday morning in the clinic's zone
FIXED_NOW = datetime(2026, 3, 10, 8, 0)


class FixedClock:
    """Callable clock the tests move forward by hand"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def day(self, offset: int = 0) -> str:
        return (self.now.date() + timedelta(days=offset)).isoformat()


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that records external deliveries instead of sending them"""

    def __init__(self):
        super().__init__(session_factory=TestingSessionLocal)
        self.sent = []

    def dispatch_later(self, user_id, category, content, language=None):
        self.sent.append((user_id, category, content))

    def sent_to(self, user_id, category=None):
        return [
            content
            for uid, cat, content in self.sent
            if uid == user_id and (category is None or cat == category)
        ]


class Factory:
    """Builds committed catalog and account rows"""

    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def hospital(self, name="Central Hospital", refund_policy=100) -> Hospital:
        hospital = Hospital(name_en=name, name_ar=name, refund_policy_percentage=refund_policy)
        self.db.add(hospital)
        self.db.commit()
        return hospital

    def specialty(self, name="Cardiology") -> Specialty:
        specialty = Specialty(name_en=name, name_ar=name)
        self.db.add(specialty)
        self.db.commit()
        return specialty

    def service_type(self, hospital=None, duration=15, cost="50.00", specialty=None) -> ServiceType:
        service = ServiceType(
            name_en="Consultation",
            name_ar="استشارة",
            hospital_id=hospital.id if hospital else None,
            specialty_id=specialty.id if specialty else None,
            duration=duration,
            cost=Decimal(cost),
        )
        self.db.add(service)
        self.db.commit()
        return service

    def user(self, role, name=None, hospitals=(), specialties=(), **fields) -> User:
        seq = self._next()
        user = User(
            name_en=name or f"{role.title()} {seq}",
            name_ar=name or f"{role} {seq}",
            email=f"user{seq}@example.com",
            role=role,
            **fields,
        )
        user.hospitals = list(hospitals)
        user.specialties = list(specialties)
        self.db.add(user)
        self.db.commit()
        return user

    def patient(self, balance=None, **fields) -> User:
        patient = self.user(ROLE_PATIENT, **fields)
        if balance is not None:
            LedgerService(self.db).apply_transaction(
                patient.id, balance, CREDIT, CATEGORY_DEPOSIT, "Opening deposit", "SEED"
            )
        return patient

    def doctor(self, hospital, name="Karim", specialties=(), start="9:00 AM", end="3:00 PM", days=range(7), **fields):
        """Doctor working ``start``-``end`` at ``hospital`` on every weekday in ``days``"""
        doctor = self.user(ROLE_DOCTOR, name=name, hospitals=[hospital], specialties=specialties, **fields)
        for weekday in range(7):
            working = weekday in days
            self.db.add(
                DoctorAvailability(
                    doctor_id=doctor.id,
                    weekday=weekday,
                    is_available=working,
                    start_time=start if working else None,
                    end_time=end if working else None,
                    hospital_id=hospital.id if working else None,
                )
            )
        self.db.commit()
        return doctor

    def staff(self, hospital, role=ROLE_HOSPITAL_STAFF) -> User:
        return self.user(role, hospitals=[hospital])

    def manager(self, hospital) -> User:
        return self.user(ROLE_HOSPITAL_MANAGER, hospitals=[hospital])

    def admin(self) -> User:
        return self.user(ROLE_SUPER_ADMIN)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest.fixture
def clinic(factory):
    """One hospital with a cardiologist working 09:00-15:00 every day and a 50 LYD service"""
    hospital = factory.hospital(refund_policy=80)
    specialty = factory.specialty()
    doctor = factory.doctor(hospital, name="Karim", specialties=[specialty])
    service = factory.service_type(hospital, duration=15, cost="50.00", specialty=specialty)
    return {"hospital": hospital, "specialty": specialty, "doctor": doctor, "service": service}


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the per-test schema, for code that opens its own sessions"""
    return TestingSessionLocal
