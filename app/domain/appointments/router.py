"""Appointments router - FastAPI endpoints for booking and the appointment lifecycle"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_patient, require_roles
from ...database import get_db
from ...models import (
    ROLE_DOCTOR,
    ROLE_HOSPITAL_MANAGER,
    ROLE_HOSPITAL_STAFF,
    ROLE_SUPER_ADMIN,
    User,
)
from ...services.notification_service import NotificationDispatcher, get_dispatcher
from ...shared.exceptions import NotAvailable
from .schemas import (
    AppointmentResponse,
    BookAppointmentRequest,
    NextSlotResponse,
    ReplacementDoctor,
    RescheduleRequest,
    ResolveCancellationRequest,
    SetReminderRequest,
    UpdateStatusRequest,
    appointment_response,
    replacement_response,
)
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

require_doctor_or_staff = require_roles(
    ROLE_DOCTOR, ROLE_HOSPITAL_STAFF, ROLE_HOSPITAL_MANAGER, ROLE_SUPER_ADMIN
)


def get_appointment_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db, dispatcher)


# ============================================================================
# READ ENDPOINTS
# ============================================================================


@router.get("", response_model=list[AppointmentResponse])
async def list_appointments(
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Appointments visible to the caller's role"""
    return [appointment_response(a) for a in service.list_appointments(current_user)]


@router.get("/today", response_model=list[AppointmentResponse])
async def get_today(
    doctorId: Optional[int] = Query(None),
    current_user: User = Depends(require_doctor_or_staff),
    service: AppointmentService = Depends(get_appointment_service),
):
    return [appointment_response(a) for a in service.doctor_today(current_user, doctorId)]


@router.get("/upcoming", response_model=list[AppointmentResponse])
async def get_upcoming(
    current_user: User = Depends(require_patient),
    service: AppointmentService = Depends(get_appointment_service),
):
    return [appointment_response(a) for a in service.upcoming(current_user)]


@router.get("/history", response_model=list[AppointmentResponse])
async def get_history(
    current_user: User = Depends(require_patient),
    service: AppointmentService = Depends(get_appointment_service),
):
    return [appointment_response(a) for a in service.history(current_user)]


@router.get("/availability/doctor/{doctor_id}", response_model=NextSlotResponse)
async def get_next_slot(
    doctor_id: int,
    date: str = Query(...),
    appointmentTypeId: int = Query(...),
    hospitalId: int = Query(...),
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """
    Next bookable time for a doctor on a day.

    An unavailable or full day answers ``nextAvailableTime: null`` with the reason.
    """
    try:
        offer = service.next_slot(doctor_id, date, appointmentTypeId, hospitalId)
    except NotAvailable as e:
        return NextSlotResponse(nextAvailableTime=None, message=e.detail)
    return NextSlotResponse(nextAvailableTime=offer.time, queuePosition=offer.queue_position)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return appointment_response(service.get_appointment(current_user, appointment_id))


@router.get("/{appointment_id}/find-replacements", response_model=list[ReplacementDoctor])
async def find_replacements(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Doctors who could take over a doctor-cancelled appointment"""
    return [replacement_response(s) for s in service.find_replacements(current_user, appointment_id)]


# ============================================================================
# MUTATIONS
# ============================================================================


@router.post("", response_model=AppointmentResponse, status_code=201)
async def book_appointment(
    data: BookAppointmentRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.book(
        current_user,
        doctor_id=data.doctorId,
        hospital_id=data.hospitalId,
        service_type_id=data.appointmentTypeId,
        date=data.date,
        time=data.time,
        patient_id=data.patientId,
        force=data.force,
        cash_payment=data.cashPayment,
        notes=data.notes,
    )
    return appointment_response(appointment)


@router.put("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Patients cancel; hospital staff may also complete or mark no-show"""
    return appointment_response(service.update_status(current_user, appointment_id, data.status))


@router.put("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule(
    appointment_id: int,
    data: RescheduleRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return appointment_response(service.reschedule(current_user, appointment_id, data.date, data.time))


@router.put("/{appointment_id}/doctor-cancel")
async def doctor_cancel(
    appointment_id: int,
    current_user: User = Depends(require_doctor_or_staff),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.doctor_cancel(current_user, appointment_id)
    return {
        "message": "Appointment marked as DoctorCancelled and patient notified.",
        "appointment": appointment_response(appointment),
    }


@router.put("/{appointment_id}/resolve-cancellation")
async def resolve_cancellation(
    appointment_id: int,
    data: ResolveCancellationRequest,
    current_user: User = Depends(require_patient),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Patient picks Refund, Redirect or Reschedule for a doctor-cancelled appointment"""
    slot = data.newSlot
    appointment = service.resolve_cancellation(
        current_user,
        appointment_id,
        data.action,
        new_doctor_id=data.newDoctorId,
        new_date=slot.date if slot else None,
        new_time=slot.time if slot else None,
    )
    messages = {
        "Refund": "Full refund processed successfully",
        "Redirect": "Appointment redirected successfully",
        "Reschedule": "Appointment rescheduled successfully",
    }
    return {"message": messages[data.action], "appointment": appointment_response(appointment)}


@router.post("/{appointment_id}/set-reminder", response_model=AppointmentResponse)
async def set_reminder(
    appointment_id: int,
    data: SetReminderRequest,
    current_user: User = Depends(require_patient),
    service: AppointmentService = Depends(get_appointment_service),
):
    return appointment_response(service.set_reminder(current_user, appointment_id, data.reminderOption))
