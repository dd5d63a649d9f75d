"""Queue router - FastAPI endpoints for the live waiting line"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import require_patient, require_queue_operator
from ...database import get_db
from ...models import User
from ...services.notification_service import NotificationDispatcher, get_dispatcher
from ...shared.exceptions import ValidationError
from .schemas import (
    CallNextRequest,
    CheckInRequest,
    DoctorBoardResponse,
    JoinQueueRequest,
    QueueItemResponse,
    QueueStatusResponse,
    WalkInRequest,
    doctor_board_response,
    queue_item_response,
    queue_status_response,
)
from .service import QueueCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["Queue"])


def get_queue_coordinator(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> QueueCoordinator:
    """Dependency injection for QueueCoordinator"""
    return QueueCoordinator(db, dispatcher)


# ============================================================================
# PATIENT ENDPOINTS
# ============================================================================


@router.get("/status", response_model=QueueStatusResponse)
async def get_queue_status(
    current_user: User = Depends(require_patient),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    """Position, wait estimate and today's appointments; joins a same-day booking automatically"""
    return queue_status_response(coordinator.patient_status(current_user))


@router.post("/join", response_model=QueueItemResponse, status_code=201)
async def join_queue(
    data: JoinQueueRequest,
    current_user: User = Depends(require_patient),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    item = coordinator.join(current_user, data.doctorId, data.hospitalId)
    return queue_item_response(item, *coordinator.position_of(item))


@router.post("/leave")
async def leave_queue(
    current_user: User = Depends(require_patient),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    item = coordinator.leave(current_user)
    return {"success": item is not None}


@router.get("/history", response_model=list[QueueItemResponse])
async def get_queue_history(
    current_user: User = Depends(require_patient),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    return [queue_item_response(item) for item in coordinator.history(current_user)]


# ============================================================================
# OPERATOR ENDPOINTS
# ============================================================================


@router.get("/doctor/{doctor_id}", response_model=DoctorBoardResponse)
async def get_doctor_board(
    doctor_id: int,
    current_user: User = Depends(require_queue_operator),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    return doctor_board_response(coordinator.doctor_board(current_user, doctor_id))


@router.post("/call-next")
async def call_next(
    data: CallNextRequest,
    current_user: User = Depends(require_queue_operator),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    item = coordinator.call_next(current_user, data.doctorId)
    if item is None:
        return {"success": True, "nowServing": None, "message": "No patients waiting."}
    return {"success": True, "nowServing": queue_item_response(item)}


@router.post("/{item_id}/hold", response_model=QueueItemResponse)
async def hold_patient(
    item_id: int,
    current_user: User = Depends(require_queue_operator),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    return queue_item_response(coordinator.hold(current_user, item_id))


@router.post("/{item_id}/requeue", response_model=QueueItemResponse)
async def requeue_patient(
    item_id: int,
    current_user: User = Depends(require_queue_operator),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    item = coordinator.resume(current_user, item_id)
    return queue_item_response(item, *coordinator.position_of(item))


@router.delete("/{item_id}", response_model=QueueItemResponse)
async def remove_from_queue(
    item_id: int,
    current_user: User = Depends(require_queue_operator),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    return queue_item_response(coordinator.remove(current_user, item_id))


@router.post("/walk-in", response_model=QueueItemResponse, status_code=201)
async def add_walk_in(
    data: WalkInRequest,
    current_user: User = Depends(require_queue_operator),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    """Add an unregistered patient by doctor, or by specialty to the least busy doctor"""
    if data.doctorId is not None:
        item = coordinator.add_walk_in(current_user, data.name, data.doctorId)
    elif data.specialtyId is not None:
        item = coordinator.add_walk_in_by_specialty(current_user, data.name, data.specialtyId)
    else:
        raise ValidationError("Either doctorId or specialtyId is required.")
    return queue_item_response(item, *coordinator.position_of(item))


@router.post("/check-in", response_model=QueueItemResponse, status_code=201)
async def check_in(
    data: CheckInRequest,
    current_user: User = Depends(require_queue_operator),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
):
    item = coordinator.check_in(current_user, data.appointmentId)
    return queue_item_response(item, *coordinator.position_of(item))
