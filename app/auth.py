import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, selectinload

from .database import get_db
from .models import (
    ROLE_DOCTOR,
    ROLE_HOSPITAL_MANAGER,
    ROLE_HOSPITAL_STAFF,
    ROLE_PATIENT,
    ROLE_SUPER_ADMIN,
    Appointment,
    User,
)
from .security_utils import verify_jwt_token
from .shared.exceptions import Unauthorized

logger = logging.getLogger(__name__)

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to an enabled user account"""
    claims = verify_jwt_token(credentials.credentials)
    if not claims or "sub" not in claims:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject") from None

    user = (
        db.query(User)
        .options(selectinload(User.hospitals), selectinload(User.specialties))
        .filter(User.id == user_id)
        .first()
    )
    if not user:
        logger.warning(f"⚠️ Token for unknown user {user_id}")
        raise HTTPException(status_code=401, detail="User not found")
    if user.is_disabled or not user.is_active:
        logger.warning(f"⚠️ Disabled account {user_id} attempted access")
        raise HTTPException(status_code=403, detail="Account is disabled")
    return user


def require_roles(*roles: str):
    """Build a dependency that only admits users holding one of ``roles``"""

    async def _checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user

    return _checker


require_staff = require_roles(ROLE_SUPER_ADMIN, ROLE_HOSPITAL_MANAGER, ROLE_HOSPITAL_STAFF)
require_queue_operator = require_roles(
    ROLE_SUPER_ADMIN, ROLE_HOSPITAL_MANAGER, ROLE_HOSPITAL_STAFF, ROLE_DOCTOR
)
require_manager = require_roles(ROLE_SUPER_ADMIN, ROLE_HOSPITAL_MANAGER)
require_super_admin = require_roles(ROLE_SUPER_ADMIN)
require_patient = require_roles(ROLE_PATIENT)


# ============================================================================
# RELATIONSHIP CHECKS
# ============================================================================


def ensure_hospital_access(user: User, hospital_id: int) -> None:
    """Staff and managers may only act on their own hospitals"""
    if user.role == ROLE_SUPER_ADMIN:
        return
    if hospital_id not in user.hospital_ids():
        raise Unauthorized("You are not a member of this hospital")


def ensure_doctor_access(user: User, doctor: User) -> None:
    """A doctor may act on themselves; staff on doctors sharing a hospital"""
    if user.role == ROLE_SUPER_ADMIN:
        return
    if user.role == ROLE_DOCTOR:
        if user.id != doctor.id:
            raise Unauthorized("Doctors may only manage their own schedule")
        return
    if user.role in (ROLE_HOSPITAL_MANAGER, ROLE_HOSPITAL_STAFF):
        if not user.hospital_ids() & doctor.hospital_ids():
            raise Unauthorized("Doctor does not belong to your hospital")
        return
    raise Unauthorized("Insufficient permissions")


def ensure_appointment_access(user: User, appointment: Appointment) -> None:
    if user.role == ROLE_SUPER_ADMIN:
        return
    if user.role == ROLE_PATIENT and appointment.patient_id == user.id:
        return
    if user.role == ROLE_DOCTOR and appointment.doctor_id == user.id:
        return
    if user.role in (ROLE_HOSPITAL_MANAGER, ROLE_HOSPITAL_STAFF) and (
        appointment.hospital_id in user.hospital_ids()
    ):
        return
    raise Unauthorized("You do not have access to this appointment")
