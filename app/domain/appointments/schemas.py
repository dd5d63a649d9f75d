"""Appointment domain schemas - Pydantic models for booking requests and responses"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import validate_date_string, validate_time_string


class LocalizedName(BaseModel):
    en: str
    ar: Optional[str] = None


class BookAppointmentRequest(BaseModel):
    doctorId: int
    hospitalId: int
    appointmentTypeId: int
    date: str
    time: str
    patientId: Optional[int] = None
    force: bool = False
    cashPayment: bool = False
    notes: Optional[str] = None

    @field_validator("date")
    @classmethod
    def check_date(cls, v):
        return validate_date_string(v)

    @field_validator("time")
    @classmethod
    def check_time(cls, v):
        return validate_time_string(v)


class UpdateStatusRequest(BaseModel):
    status: Literal["Cancelled", "Completed", "NoShow"]


class RescheduleRequest(BaseModel):
    date: str
    time: str

    @field_validator("date")
    @classmethod
    def check_date(cls, v):
        return validate_date_string(v)

    @field_validator("time")
    @classmethod
    def check_time(cls, v):
        return validate_time_string(v)


class NewSlot(BaseModel):
    date: Optional[str] = None
    time: Optional[str] = None


class ResolveCancellationRequest(BaseModel):
    action: Literal["Refund", "Redirect", "Reschedule"]
    newDoctorId: Optional[int] = None
    newSlot: Optional[NewSlot] = None


class SetReminderRequest(BaseModel):
    reminderOption: Literal["1-hour-before", "1-day-before", "2-days-before"]


class AppointmentResponse(BaseModel):
    id: int
    patientId: int
    patientName: Optional[LocalizedName] = None
    doctorId: int
    doctorName: Optional[LocalizedName] = None
    hospitalId: int
    hospitalName: Optional[LocalizedName] = None
    appointmentTypeId: int
    appointmentType: Optional[LocalizedName] = None
    date: str
    time: str
    cost: Decimal
    status: str
    cancellationResolution: Optional[str] = None
    isRefunded: bool
    reminderSet: bool
    queueNumber: Optional[str] = None
    notes: Optional[str] = None
    createdAt: Optional[datetime] = None


class NextSlotResponse(BaseModel):
    nextAvailableTime: Optional[str] = None
    queuePosition: Optional[int] = None
    message: Optional[str] = None


class ReplacementDoctor(BaseModel):
    doctorId: int
    doctorName: LocalizedName
    startTime: Optional[str] = None
    endTime: Optional[str] = None


def _localized(entity) -> Optional[LocalizedName]:
    if entity is None:
        return None
    return LocalizedName(en=entity.name_en, ar=entity.name_ar)


def appointment_response(a) -> AppointmentResponse:
    return AppointmentResponse(
        id=a.id,
        patientId=a.patient_id,
        patientName=_localized(a.patient),
        doctorId=a.doctor_id,
        doctorName=_localized(a.doctor),
        hospitalId=a.hospital_id,
        hospitalName=_localized(a.hospital),
        appointmentTypeId=a.service_type_id,
        appointmentType=_localized(a.service_type),
        date=a.date,
        time=a.time,
        cost=a.cost,
        status=a.status,
        cancellationResolution=a.cancellation_resolution,
        isRefunded=a.is_refunded,
        reminderSet=a.reminder_set,
        queueNumber=a.queue_number,
        notes=a.notes,
        createdAt=a.created_at,
    )


def replacement_response(suggestion: dict) -> ReplacementDoctor:
    doctor = suggestion["doctor"]
    return ReplacementDoctor(
        doctorId=doctor.id,
        doctorName=_localized(doctor),
        startTime=suggestion["startTime"],
        endTime=suggestion["endTime"],
    )
