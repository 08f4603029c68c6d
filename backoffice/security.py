# backoffice/security.py
import logging
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from . import models
from .config import get_settings
from .database import get_db
from .exceptions import ForbiddenError

security_logger = logging.getLogger("security")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/token")

CLINICIAN_ROLES = (models.UserRole.DOCTOR, models.UserRole.NURSE)
CLINICAL_STAFF_ROLES = (models.UserRole.ADMIN,) + CLINICIAN_ROLES


# Role predicates
def is_admin(user) -> bool:
    return user.role == models.UserRole.ADMIN


def is_receptionist(user) -> bool:
    return user.role == models.UserRole.RECEPTIONIST


def is_clinician(user) -> bool:
    return user.role in CLINICIAN_ROLES


def scoped_doctor_id(user, requested_doctor_id: Optional[int]) -> Optional[int]:
    """Clinicians only ever see their own schedule and money."""
    if is_clinician(user):
        return user.id
    return requested_doctor_id


# Access assertions
def assert_role(user, *roles: models.UserRole) -> None:
    if user.role not in roles:
        raise ForbiddenError(role=user.role, allowed_roles=[r.value for r in roles])


def assert_appointment_access(user, appointment: models.Appointment) -> None:
    if is_admin(user) or is_receptionist(user):
        return
    if is_clinician(user) and appointment.doctor_id == user.id:
        return
    raise ForbiddenError(appointment_id=appointment.id)


def assert_patient_access(db: Session, user, patient_id: int) -> None:
    if is_admin(user) or is_receptionist(user):
        return
    if not is_clinician(user):
        raise ForbiddenError(patient_id=patient_id)
    has_access = db.query(models.Appointment.id).filter(
        models.Appointment.patient_id == patient_id,
        models.Appointment.doctor_id == user.id,
    ).first()
    if not has_access:
        raise ForbiddenError(patient_id=patient_id)


def assert_medical_record_access(user, record: models.MedicalRecord) -> None:
    if is_receptionist(user):
        raise ForbiddenError(medical_record_id=record.id)
    if is_admin(user):
        return
    owner_id = record.appointment.doctor_id if record.appointment is not None else record.doctor_id
    if is_clinician(user) and owner_id == user.id:
        return
    raise ForbiddenError(medical_record_id=record.id)


# JWT utilities
def verify_token(token: str, token_type: str = "access") -> Optional[Dict[str, Any]]:
    """Verify and decode JWT token"""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return payload


# Dependencies for FastAPI
def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = verify_token(token, "access")
    if not payload:
        raise credentials_exception

    user_id = payload.get("user_id")
    if not user_id:
        raise credentials_exception

    user = db.get(models.User, user_id)
    if not user:
        raise credentials_exception

    if not user.is_active:
        security_logger.warning(f"Inactive user {user_id} attempted access")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    return user


def require_role(*allowed_roles: models.UserRole):
    """Dependency factory for role-based access control"""
    def role_dependency(current_user: models.User = Depends(get_current_user)) -> models.User:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {', '.join(r.value for r in allowed_roles)}",
            )
        return current_user

    return role_dependency


# Specific role dependencies
require_admin = require_role(models.UserRole.ADMIN)
require_front_desk = require_role(models.UserRole.ADMIN, models.UserRole.RECEPTIONIST)
require_clinical_staff = require_role(*CLINICAL_STAFF_ROLES)
