"""Queue domain schemas - Pydantic models for queue requests and responses"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


class JoinQueueRequest(BaseModel):
    doctorId: int
    hospitalId: int


class CallNextRequest(BaseModel):
    doctorId: int


class WalkInRequest(BaseModel):
    name: str
    doctorId: Optional[int] = None
    specialtyId: Optional[int] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("Walk-in name is required.")
        return v


class CheckInRequest(BaseModel):
    appointmentId: int


class QueueItemResponse(BaseModel):
    id: int
    patientId: Optional[int] = None
    name: str
    doctorId: int
    hospitalId: int
    appointmentId: Optional[int] = None
    queueNumber: str
    status: str
    checkInTime: datetime
    position: Optional[int] = None
    estimatedWaitTime: Optional[int] = None


class AppointmentSummary(BaseModel):
    id: int
    doctorId: int
    patientId: int
    patientName: Optional[str] = None
    doctorName: Optional[str] = None
    hospitalId: int
    date: str
    time: str
    status: str
    queueNumber: Optional[str] = None


class QueueStatusResponse(BaseModel):
    inQueue: bool
    doctorId: Optional[int] = None
    doctorName: Optional[str] = None
    position: Optional[int] = None
    estimatedWaitTime: int = 0
    status: Optional[str] = None
    queueNumber: Optional[str] = None
    nowServingNumber: Optional[str] = None
    todaysAppointments: list[AppointmentSummary] = []
    upcomingAppointments: list[AppointmentSummary] = []


class DoctorBoardResponse(BaseModel):
    doctorId: int
    nowServing: Optional[QueueItemResponse] = None
    waiting: list[QueueItemResponse]
    held: list[QueueItemResponse]
    appointments: list[AppointmentSummary]


def queue_item_response(item, position: Optional[int] = None, wait: Optional[int] = None) -> QueueItemResponse:
    return QueueItemResponse(
        id=item.id,
        patientId=item.patient_id,
        name=item.display_name,
        doctorId=item.doctor_id,
        hospitalId=item.hospital_id,
        appointmentId=item.appointment_id,
        queueNumber=item.queue_number,
        status=item.status,
        checkInTime=item.check_in_time,
        position=position,
        estimatedWaitTime=wait,
    )


def appointment_summary(a) -> AppointmentSummary:
    return AppointmentSummary(
        id=a.id,
        doctorId=a.doctor_id,
        patientId=a.patient_id,
        patientName=a.patient.name_en if a.patient else None,
        doctorName=a.doctor.name_en if a.doctor else None,
        hospitalId=a.hospital_id,
        date=a.date,
        time=a.time,
        status=a.status,
        queueNumber=a.queue_number,
    )


def queue_status_response(status: dict) -> QueueStatusResponse:
    return QueueStatusResponse(
        **{
            **status,
            "todaysAppointments": [appointment_summary(a) for a in status["todaysAppointments"]],
            "upcomingAppointments": [appointment_summary(a) for a in status["upcomingAppointments"]],
        }
    )


def doctor_board_response(board: dict) -> DoctorBoardResponse:
    waiting = board["waiting"]
    return DoctorBoardResponse(
        doctorId=board["doctorId"],
        nowServing=queue_item_response(board["nowServing"]) if board["nowServing"] else None,
        waiting=[queue_item_response(item, position=i) for i, item in enumerate(waiting, start=1)],
        held=[queue_item_response(item, position=-1) for item in board["held"]],
        appointments=[appointment_summary(a) for a in board["appointments"]],
    )
