from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Roles
ROLE_SUPER_ADMIN = "super admin"
ROLE_HOSPITAL_MANAGER = "hospital manager"
ROLE_HOSPITAL_STAFF = "hospital staff"
ROLE_DOCTOR = "doctor"
ROLE_PATIENT = "patient"

STAFF_ROLES = (ROLE_SUPER_ADMIN, ROLE_HOSPITAL_MANAGER, ROLE_HOSPITAL_STAFF)

# Appointment lifecycle
APPOINTMENT_UPCOMING = "Upcoming"
APPOINTMENT_COMPLETED = "Completed"
APPOINTMENT_CANCELLED = "Cancelled"
APPOINTMENT_NO_SHOW = "NoShow"
APPOINTMENT_DOCTOR_CANCELLED = "DoctorCancelled"

RESOLUTION_PENDING = "Pending"
RESOLUTION_RESCHEDULED = "Rescheduled"
RESOLUTION_REFUNDED = "Refunded"
RESOLUTION_REDIRECTED = "Redirected"

# Queue lifecycle
QUEUE_WAITING = "Waiting"
QUEUE_SERVING = "Serving"
QUEUE_HELD = "Held"
QUEUE_DONE = "Done"
QUEUE_LEFT = "Left"
QUEUE_REMOVED = "RemovedByAdmin"

ACTIVE_QUEUE_STATUSES = (QUEUE_WAITING, QUEUE_SERVING, QUEUE_HELD)

# Ledger
CREDIT = "credit"
DEBIT = "debit"

CATEGORY_APPOINTMENT_FEE = "Appointment Fee"
CATEGORY_REFUND = "Refund"
CATEGORY_DEPOSIT = "Deposit"
CATEGORY_ADMIN_CREDIT = "Admin Credit"
CATEGORY_INITIAL_BALANCE = "Initial Balance"

TRANSACTION_CATEGORIES = (
    CATEGORY_APPOINTMENT_FEE,
    CATEGORY_REFUND,
    CATEGORY_DEPOSIT,
    CATEGORY_ADMIN_CREDIT,
    CATEGORY_INITIAL_BALANCE,
)


user_hospitals = Table(
    "user_hospitals",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("hospital_id", Integer, ForeignKey("hospitals.id", ondelete="CASCADE"), primary_key=True),
)

user_specialties = Table(
    "user_specialties",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "specialty_id", Integer, ForeignKey("specialties.id", ondelete="CASCADE"), primary_key=True
    ),
)


class Hospital(Base):
    __tablename__ = "hospitals"

    id = Column(Integer, primary_key=True, index=True)
    name_en = Column(String(255), nullable=False)
    name_ar = Column(String(255), nullable=True)
    refund_policy_percentage = Column(Integer, default=100, nullable=False)  # 0-100
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class Specialty(Base):
    __tablename__ = "specialties"

    id = Column(Integer, primary_key=True, index=True)
    name_en = Column(String(255), nullable=False)
    name_ar = Column(String(255), nullable=True)


class ServiceType(Base):
    """Bookable service (consultation, follow-up, ...) with duration and price"""

    __tablename__ = "service_types"

    id = Column(Integer, primary_key=True, index=True)
    hospital_id = Column(Integer, ForeignKey("hospitals.id", ondelete="CASCADE"), nullable=True)
    specialty_id = Column(Integer, ForeignKey("specialties.id", ondelete="SET NULL"), nullable=True)
    name_en = Column(String(255), nullable=False)
    name_ar = Column(String(255), nullable=True)
    duration = Column(Integer, default=15, nullable=False)  # minutes
    cost = Column(Numeric(10, 2), default=0, nullable=False)
    is_disabled = Column(Boolean, default=False, nullable=False)

    hospital = relationship("Hospital")
    specialty = relationship("Specialty")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name_en = Column(String(255), nullable=False)
    name_ar = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=True)
    phone = Column(String(32), nullable=True)  # E.164
    role = Column(String(50), default=ROLE_PATIENT, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_disabled = Column(Boolean, default=False, nullable=False)
    preferred_language = Column(String(5), nullable=True)  # en, ar
    fcm_token = Column(String(512), nullable=True)

    # Per-channel notification preferences
    notify_push = Column(Boolean, default=True, nullable=False)
    notify_email = Column(Boolean, default=True, nullable=False)
    notify_sms = Column(Boolean, default=False, nullable=False)

    # Doctor reminder preferences
    reminders_enabled = Column(Boolean, default=True, nullable=False)
    reminder_24h = Column(Boolean, default=True, nullable=False)
    reminder_1h = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())

    hospitals = relationship("Hospital", secondary=user_hospitals, order_by="Hospital.id")
    specialties = relationship("Specialty", secondary=user_specialties, order_by="Specialty.id")
    availability = relationship(
        "DoctorAvailability",
        back_populates="doctor",
        cascade="all, delete-orphan",
        order_by="DoctorAvailability.weekday",
    )
    unavailability = relationship(
        "UnavailabilityEpisode",
        back_populates="doctor",
        cascade="all, delete-orphan",
        order_by="UnavailabilityEpisode.start_date",
    )
    wallet = relationship("Wallet", back_populates="user", uselist=False, cascade="all, delete-orphan")

    @property
    def primary_hospital_id(self):
        return self.hospitals[0].id if self.hospitals else None

    def hospital_ids(self) -> set:
        return {h.id for h in self.hospitals}


class DoctorAvailability(Base):
    """One weekday record of a doctor's recurring schedule (always seven per doctor)"""

    __tablename__ = "doctor_availability"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)  # 0=Monday .. 6=Sunday
    is_available = Column(Boolean, default=False, nullable=False)
    start_time = Column(String(10), nullable=True)
    end_time = Column(String(10), nullable=True)
    hospital_id = Column(Integer, ForeignKey("hospitals.id", ondelete="SET NULL"), nullable=True)

    doctor = relationship("User", back_populates="availability")

    __table_args__ = (Index("ix_doctor_availability_day", "doctor_id", "weekday", unique=True),)


class UnavailabilityEpisode(Base):
    __tablename__ = "unavailability_episodes"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    end_date = Column(String(10), nullable=False)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    doctor = relationship("User", back_populates="unavailability")

    def covers(self, date: str) -> bool:
        return self.start_date <= date <= self.end_date


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    hospital_id = Column(Integer, ForeignKey("hospitals.id"), nullable=False)
    service_type_id = Column(Integer, ForeignKey("service_types.id"), nullable=False)
    date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    time = Column(String(10), nullable=False)  # canonical "h:mm AM/PM"
    cost = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)
    status = Column(String(20), default=APPOINTMENT_UPCOMING, nullable=False, index=True)
    cancellation_resolution = Column(String(20), nullable=True)
    is_refunded = Column(Boolean, default=False, nullable=False)
    reminder_set = Column(Boolean, default=False, nullable=False)
    reminder_type = Column(String(20), nullable=True)
    doctor_reminder_24h_sent = Column(Boolean, default=False, nullable=False)
    doctor_reminder_24h_sent_at = Column(DateTime, nullable=True)
    doctor_reminder_1h_sent = Column(Boolean, default=False, nullable=False)
    doctor_reminder_1h_sent_at = Column(DateTime, nullable=True)
    queue_number = Column(String(10), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor = relationship("User", foreign_keys=[doctor_id])
    patient = relationship("User", foreign_keys=[patient_id])
    hospital = relationship("Hospital")
    service_type = relationship("ServiceType")

    __table_args__ = (
        # Exact double-booking guard; only live bookings hold a slot
        Index(
            "uq_appointment_doctor_slot",
            "doctor_id",
            "date",
            "time",
            unique=True,
            sqlite_where=text("status = 'Upcoming'"),
            postgresql_where=text("status = 'Upcoming'"),
        ),
    )


class QueueItem(Base):
    __tablename__ = "queue_items"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    walk_in_name = Column(String(255), nullable=True)
    doctor_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    hospital_id = Column(Integer, ForeignKey("hospitals.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)
    queue_number = Column(String(10), nullable=False)
    status = Column(String(20), default=QUEUE_WAITING, nullable=False, index=True)
    check_in_time = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("User", foreign_keys=[patient_id])
    doctor = relationship("User", foreign_keys=[doctor_id])
    hospital = relationship("Hospital")
    appointment = relationship("Appointment")

    __table_args__ = (
        # At most one active entry per registered patient, across all doctors
        Index(
            "uq_queue_active_patient",
            "patient_id",
            unique=True,
            sqlite_where=text("status IN ('Waiting', 'Serving', 'Held') AND patient_id IS NOT NULL"),
            postgresql_where=text(
                "status IN ('Waiting', 'Serving', 'Held') AND patient_id IS NOT NULL"
            ),
        ),
    )

    @property
    def display_name(self) -> str:
        if self.patient is not None:
            return self.patient.name_en
        return self.walk_in_name or ""


class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    balance = Column(Numeric(12, 2), default=0, nullable=False)
    currency = Column(String(3), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="wallet")
    transactions = relationship(
        "Transaction", back_populates="wallet", order_by="Transaction.id", cascade="all, delete-orphan"
    )


class Transaction(Base):
    """Immutable ledger entry; exactly one per balance mutation"""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    hospital_id = Column(Integer, ForeignKey("hospitals.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)  # always positive; sign comes from type
    type = Column(String(10), nullable=False)  # credit, debit
    category = Column(String(50), nullable=False)
    status = Column(String(20), default="Completed", nullable=False)
    description = Column(String(500), nullable=True)
    reference_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    wallet = relationship("Wallet", back_populates="transactions")

    @property
    def signed_amount(self):
        return self.amount if self.type == CREDIT else -self.amount


class RedeemCode(Base):
    __tablename__ = "redeem_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, nullable=False, index=True)  # stored upper-case
    amount = Column(Numeric(12, 2), nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    used_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Notification(Base):
    """In-app notification inbox entry"""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String(20), nullable=False)  # appointment, reminder, wallet, system
    title = Column(JSON, nullable=False)  # {"en": ..., "ar": ...}
    body = Column(JSON, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
