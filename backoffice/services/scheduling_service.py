# backoffice/services/scheduling_service.py
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .. import models, schemas
from ..compliance_logger import compliance_logger
from ..config import get_settings
from ..core.clinic_time import civil_date_of, day_range, ensure_utc
from ..database import is_serialization_failure, serializable_session
from ..exceptions import (
    InvalidInputError,
    NotFoundError,
    SchedulingConflictError,
    SerializationConflictError,
)
from ..security import CLINICIAN_ROLES

logger = logging.getLogger(__name__)

# Statuses that no longer hold a slot on the clinician's calendar
NON_BLOCKING_STATUSES = (models.AppointmentStatus.CANCELLED, models.AppointmentStatus.NO_SHOW)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open intervals [start, end) overlap iff each starts before the other ends."""
    return start_a < end_b and start_b < end_a


def validate_duration(duration: Optional[int]) -> int:
    settings = get_settings()
    if duration is None:
        return settings.default_appointment_duration
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise InvalidInputError("duration must be a whole number of minutes", duration=duration)
    if duration < settings.min_appointment_duration or duration > settings.max_appointment_duration:
        raise InvalidInputError(
            f"duration must be between {settings.min_appointment_duration} and "
            f"{settings.max_appointment_duration} minutes",
            duration=duration,
        )
    return duration


def find_conflicts(
    db: Session,
    doctor_id: int,
    start: datetime,
    duration: int,
    exclude_appointment_id: Optional[int] = None,
    tz_name: Optional[str] = None,
) -> List[models.Appointment]:
    """Blocking appointments of ``doctor_id`` that overlap [start, start + duration).

    The search window is the clinic civil day that contains ``start``.
    """
    tz_name = tz_name or get_settings().clinic_timezone
    start = ensure_utc(start)
    end = start + timedelta(minutes=duration)
    window = day_range(civil_date_of(start, tz_name), tz_name)

    query = db.query(models.Appointment).filter(
        models.Appointment.doctor_id == doctor_id,
        models.Appointment.scheduled_date >= window.start_utc,
        models.Appointment.scheduled_date < window.end_utc,
        ~models.Appointment.status.in_(NON_BLOCKING_STATUSES),
    )
    if exclude_appointment_id is not None:
        query = query.filter(models.Appointment.id != exclude_appointment_id)

    return [
        existing for existing in query.order_by(models.Appointment.scheduled_date).all()
        if intervals_overlap(start, end, existing.scheduled_date, existing.end_time)
    ]


def check_no_conflict(
    db: Session,
    doctor_id: int,
    start: datetime,
    duration: int,
    exclude_appointment_id: Optional[int] = None,
    tz_name: Optional[str] = None,
) -> None:
    """Raise SchedulingConflictError naming the first overlapping appointment."""
    conflicts = find_conflicts(db, doctor_id, start, duration, exclude_appointment_id, tz_name)
    if not conflicts:
        return
    first = conflicts[0]
    start = ensure_utc(start)
    logger.info(
        f"Scheduling conflict for doctor {doctor_id} at {start.isoformat()}: overlaps appointment {first.id}"
    )
    raise SchedulingConflictError(
        doctor_id,
        start,
        start + timedelta(minutes=duration),
        conflicting_appointment_id=first.id,
        conflicting_start=first.scheduled_date,
        conflicting_end=first.end_time,
    )


def get_appointment(db: Session, appointment_id: int) -> models.Appointment:
    appointment = db.query(models.Appointment).options(
        joinedload(models.Appointment.patient),
        joinedload(models.Appointment.doctor),
        joinedload(models.Appointment.payment),
        joinedload(models.Appointment.medical_record),
    ).filter(models.Appointment.id == appointment_id).first()
    if appointment is None:
        raise NotFoundError("Appointment", appointment_id)
    return appointment


def list_appointments_for_day(
    db: Session,
    civil_date: str,
    tz_name: Optional[str] = None,
    doctor_id: Optional[int] = None,
    status: Optional[models.AppointmentStatus] = None,
) -> List[models.Appointment]:
    """Appointments starting inside one civil day, with their joined summaries."""
    tz_name = tz_name or get_settings().clinic_timezone
    window = day_range(civil_date, tz_name)
    query = db.query(models.Appointment).options(
        joinedload(models.Appointment.patient),
        joinedload(models.Appointment.doctor),
        joinedload(models.Appointment.payment),
        joinedload(models.Appointment.medical_record),
    ).filter(
        models.Appointment.scheduled_date >= window.start_utc,
        models.Appointment.scheduled_date < window.end_utc,
    )
    if doctor_id is not None:
        query = query.filter(models.Appointment.doctor_id == doctor_id)
    if status is not None:
        query = query.filter(models.Appointment.status == status)
    return query.order_by(models.Appointment.scheduled_date, models.Appointment.id).all()


def _require_patient(db: Session, patient_id: int) -> None:
    if db.get(models.Patient, patient_id) is None:
        raise NotFoundError("Patient", patient_id)


def _require_clinician(db: Session, doctor_id: int) -> None:
    doctor = db.get(models.User, doctor_id)
    if doctor is None:
        raise NotFoundError("Doctor", doctor_id)
    if doctor.role not in CLINICIAN_ROLES or not doctor.is_active:
        raise InvalidInputError("Appointments can only be booked with an active clinician", doctor_id=doctor_id)


def book_appointment(db: Session, payload: schemas.AppointmentCreate, actor=None) -> models.Appointment:
    """Book a new SCHEDULED appointment.

    The conflict read and the insert share one SERIALIZABLE transaction. If
    storage aborts it because a concurrent booking committed first, the caller
    gets the same conflict error an overlap would have produced.
    """
    duration = validate_duration(payload.duration)
    start = ensure_utc(payload.scheduled_date)

    try:
        with serializable_session(db) as tx:
            _require_patient(tx, payload.patient_id)
            _require_clinician(tx, payload.doctor_id)
            check_no_conflict(tx, payload.doctor_id, start, duration)

            appointment = models.Appointment(
                patient_id=payload.patient_id,
                doctor_id=payload.doctor_id,
                scheduled_date=start,
                duration=duration,
                status=models.AppointmentStatus.SCHEDULED,
                type=payload.type,
                notes=payload.notes,
            )
            tx.add(appointment)
            tx.flush()
            appointment_id = appointment.id
    except DBAPIError as e:
        if is_serialization_failure(e):
            logger.warning(f"Concurrent booking aborted for doctor {payload.doctor_id} at {start.isoformat()}")
            raise SerializationConflictError(payload.doctor_id, start, start + timedelta(minutes=duration)) from e
        logger.error(f"Database error during appointment booking: {e}")
        raise

    logger.info(f"Booked appointment {appointment_id} for patient {payload.patient_id} with doctor {payload.doctor_id}")
    compliance_logger.log_event(
        actor_user_id=getattr(actor, "id", None),
        actor_role=getattr(actor, "role", None),
        action="APPOINTMENT_CREATE",
        entity_type="APPOINTMENT",
        entity_id=appointment_id,
        metadata={"doctor_id": payload.doctor_id, "patient_id": payload.patient_id, "start": start, "duration": duration},
    )
    return get_appointment(db, appointment_id)


def reschedule_appointment(
    db: Session, appointment_id: int, payload: schemas.AppointmentUpdate, actor=None
) -> models.Appointment:
    """Edit an appointment; the conflict guard re-runs only if its slot moved."""
    changes = payload.model_dump(exclude_unset=True)
    new_doctor_id, new_start, new_duration = None, None, None

    try:
        with serializable_session(db) as tx:
            appointment = tx.get(models.Appointment, appointment_id)
            if appointment is None:
                raise NotFoundError("Appointment", appointment_id)

            new_doctor_id = changes.get("doctor_id") or appointment.doctor_id
            new_start = ensure_utc(changes.get("scheduled_date") or appointment.scheduled_date)
            new_duration = validate_duration(changes["duration"]) if changes.get("duration") is not None else appointment.duration

            slot_moved = (
                new_doctor_id != appointment.doctor_id
                or new_start != appointment.scheduled_date
                or new_duration != appointment.duration
            )
            if "patient_id" in changes and changes["patient_id"] is not None:
                _require_patient(tx, changes["patient_id"])
                appointment.patient_id = changes["patient_id"]
            if slot_moved:
                if new_doctor_id != appointment.doctor_id:
                    _require_clinician(tx, new_doctor_id)
                check_no_conflict(tx, new_doctor_id, new_start, new_duration, exclude_appointment_id=appointment.id)
                appointment.doctor_id = new_doctor_id
                appointment.scheduled_date = new_start
                appointment.duration = new_duration
            if changes.get("type") is not None:
                appointment.type = changes["type"]
            if "notes" in changes:
                appointment.notes = changes["notes"]
    except DBAPIError as e:
        if is_serialization_failure(e):
            logger.warning(f"Concurrent reschedule aborted for appointment {appointment_id}")
            new_end = new_start + timedelta(minutes=new_duration) if new_start and new_duration else None
            raise SerializationConflictError(new_doctor_id, new_start, new_end) from e
        logger.error(f"Database error during appointment reschedule: {e}")
        raise
    except SQLAlchemyError as e:
        logger.error(f"Database error during appointment reschedule: {e}")
        raise

    logger.info(f"Updated appointment {appointment_id} (slot moved: {slot_moved})")
    if slot_moved:
        compliance_logger.log_event(
            actor_user_id=getattr(actor, "id", None),
            actor_role=getattr(actor, "role", None),
            action="APPOINTMENT_RESCHEDULE",
            entity_type="APPOINTMENT",
            entity_id=appointment_id,
            metadata={"doctor_id": new_doctor_id, "start": new_start, "duration": new_duration},
        )
    db.expire_all()
    return get_appointment(db, appointment_id)
