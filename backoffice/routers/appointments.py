# backoffice/routers/appointments.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas, security
from ..database import get_db
from ..exceptions import ForbiddenError
from ..redaction import maybe_redact_for_receptionist, redact_appointment_detail, redact_day_dashboard
from ..services import appointment_state, dashboard_service, scheduling_service

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
    dependencies=[Depends(security.get_current_user)],
    responses={404: {"description": "Not found"}},
)


def _load_for(db: Session, appointment_id: int, current_user: models.User) -> models.Appointment:
    appointment = scheduling_service.get_appointment(db, appointment_id)
    security.assert_appointment_access(current_user, appointment)
    return appointment


def _respond(appointment: models.Appointment, current_user: models.User) -> dict:
    """Serialize an appointment the way this caller may see it."""
    payload = schemas.AppointmentDetail.model_validate(appointment).model_dump(mode="json")
    return maybe_redact_for_receptionist(current_user.role, payload, redact_appointment_detail)


@router.post("/", status_code=status.HTTP_201_CREATED)
def book_appointment_endpoint(
    appointment: schemas.AppointmentCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    """Book a new appointment. A clashing slot for the same clinician returns 409."""
    if security.is_clinician(current_user) and appointment.doctor_id != current_user.id:
        raise ForbiddenError("Clinicians can only book into their own schedule", doctor_id=appointment.doctor_id)
    booked = scheduling_service.book_appointment(db, appointment, actor=current_user)
    return _respond(booked, current_user)


@router.get("/day")
def get_day_dashboard_endpoint(
    date: Optional[str] = Query(None, description="Clinic civil date, YYYY-MM-DD; defaults to today"),
    tz: Optional[str] = Query(None, description="IANA timezone; defaults to the clinic timezone"),
    doctor_id: Optional[int] = None,
    status: Optional[models.AppointmentStatus] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    payload = dashboard_service.get_day_dashboard(
        db,
        civil_date=date,
        tz_name=tz,
        doctor_id=security.scoped_doctor_id(current_user, doctor_id),
        status=status,
    )
    return maybe_redact_for_receptionist(current_user.role, payload, redact_day_dashboard)


@router.get("/{appointment_id}")
def get_appointment_endpoint(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    return _respond(_load_for(db, appointment_id, current_user), current_user)


@router.patch("/{appointment_id}")
def update_appointment_endpoint(
    appointment_id: int,
    appointment_update: schemas.AppointmentUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    """Edit or reschedule. Moving the slot re-runs the conflict check."""
    _load_for(db, appointment_id, current_user)
    appointment = scheduling_service.reschedule_appointment(db, appointment_id, appointment_update, actor=current_user)
    return _respond(appointment, current_user)


@router.patch("/{appointment_id}/status")
def update_appointment_status_endpoint(
    appointment_id: int,
    status_update: schemas.AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    _load_for(db, appointment_id, current_user)
    if status_update.status in (models.AppointmentStatus.IN_PROGRESS, models.AppointmentStatus.COMPLETED):
        security.assert_role(current_user, *security.CLINICAL_STAFF_ROLES)
    appointment = appointment_state.transition(db, appointment_id, status_update.status, actor=current_user)
    return _respond(appointment, current_user)


@router.post("/{appointment_id}/confirm")
def confirm_appointment_endpoint(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    _load_for(db, appointment_id, current_user)
    appointment = appointment_state.confirm(db, appointment_id, actor=current_user)
    return _respond(appointment, current_user)


@router.post("/{appointment_id}/cancel")
def cancel_appointment_endpoint(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    _load_for(db, appointment_id, current_user)
    appointment = appointment_state.cancel(db, appointment_id, actor=current_user)
    return _respond(appointment, current_user)


@router.post("/{appointment_id}/no-show")
def mark_no_show_endpoint(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    _load_for(db, appointment_id, current_user)
    appointment = appointment_state.mark_no_show(db, appointment_id, actor=current_user)
    return _respond(appointment, current_user)


@router.post("/{appointment_id}/start")
def start_encounter_endpoint(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_clinical_staff),
):
    """Move to IN_PROGRESS and open a draft medical record if none exists."""
    _load_for(db, appointment_id, current_user)
    appointment = appointment_state.start_encounter(db, appointment_id, actor=current_user)
    return _respond(appointment, current_user)


@router.post("/{appointment_id}/complete")
def complete_encounter_endpoint(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_clinical_staff),
):
    """Close the encounter. Requires a FINAL record and, unless exempt, a PAID payment."""
    _load_for(db, appointment_id, current_user)
    appointment = appointment_state.complete_encounter(db, appointment_id, actor=current_user)
    return _respond(appointment, current_user)
