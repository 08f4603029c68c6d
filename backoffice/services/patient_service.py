# backoffice/services/patient_service.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from .. import models
from ..core.clinic_time import ensure_utc, utc_now
from ..exceptions import InvalidInputError, NotFoundError
from ..security import is_clinician
from .medical_record_service import truncate_preview

logger = logging.getLogger(__name__)

HISTORY_DEFAULT_LIMIT = 25
HISTORY_MAX_LIMIT = 100

Status = models.AppointmentStatus


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _doctor(user) -> Optional[Dict[str, Any]]:
    return {"id": user.id, "name": user.name} if user is not None else None


def get_patient(db: Session, patient_id: int) -> models.Patient:
    patient = db.get(models.Patient, patient_id)
    if patient is None:
        raise NotFoundError("Patient", patient_id)
    return patient


def list_patients(db: Session, user) -> List[models.Patient]:
    query = db.query(models.Patient)
    if is_clinician(user):
        query = query.filter(models.Patient.appointments.any(models.Appointment.doctor_id == user.id))
    return query.order_by(models.Patient.name).all()


def _patient_summary(patient: models.Patient) -> Dict[str, Any]:
    return {
        "id": patient.id,
        "name": patient.name,
        "phone": patient.phone,
        "email": patient.email,
        "birth_date": _iso(patient.birth_date),
    }


def get_patient_detail(db: Session, patient_id: int) -> Dict[str, Any]:
    """Patient with every appointment and every medical record, newest first."""
    patient = get_patient(db, patient_id)
    appointments = db.query(models.Appointment).options(
        joinedload(models.Appointment.doctor)
    ).filter(
        models.Appointment.patient_id == patient_id
    ).order_by(models.Appointment.scheduled_date.desc()).all()
    records = db.query(models.MedicalRecord).options(
        joinedload(models.MedicalRecord.doctor)
    ).filter(
        models.MedicalRecord.patient_id == patient_id
    ).order_by(models.MedicalRecord.date.desc()).all()

    return {
        **_patient_summary(patient),
        "appointments": [
            {
                "id": a.id,
                "scheduled_date": _iso(a.scheduled_date),
                "duration": a.duration,
                "status": a.status.value,
                "type": a.type,
                "notes": a.notes,
                "doctor": _doctor(a.doctor),
            }
            for a in appointments
        ],
        "medical_records": [
            {
                "id": r.id,
                "appointment_id": r.appointment_id,
                "date": _iso(r.date),
                "status": r.status.value,
                "subjective": r.subjective,
                "objective": r.objective,
                "assessment": r.assessment,
                "plan": r.plan,
                "doctor": _doctor(r.doctor),
            }
            for r in records
        ],
    }


def _count(db: Session, patient_id: int, status: Status) -> int:
    return db.query(func.count(models.Appointment.id)).filter(
        models.Appointment.patient_id == patient_id,
        models.Appointment.status == status,
    ).scalar() or 0


def _history_stats(db: Session, patient_id: int, now: datetime) -> Dict[str, Any]:
    last_visit = db.query(models.Appointment.scheduled_date).filter(
        models.Appointment.patient_id == patient_id,
        models.Appointment.status == Status.COMPLETED,
    ).order_by(models.Appointment.scheduled_date.desc()).first()
    next_appointment = db.query(models.Appointment.scheduled_date).filter(
        models.Appointment.patient_id == patient_id,
        models.Appointment.scheduled_date >= now,
        models.Appointment.status.in_((Status.SCHEDULED, Status.CONFIRMED)),
    ).order_by(models.Appointment.scheduled_date.asc()).first()

    return {
        "last_visit_at": _iso(last_visit[0]) if last_visit else None,
        "next_appointment_at": _iso(next_appointment[0]) if next_appointment else None,
        "completed_count": _count(db, patient_id, Status.COMPLETED),
        "no_show_count": _count(db, patient_id, Status.NO_SHOW),
        "cancelled_count": _count(db, patient_id, Status.CANCELLED),
    }


def _timeline_entry(appointment: models.Appointment) -> Dict[str, Any]:
    record = appointment.medical_record
    payment = appointment.payment
    return {
        "appointment_id": appointment.id,
        "scheduled_date": _iso(appointment.scheduled_date),
        "duration": appointment.duration,
        "type": appointment.type,
        "status": appointment.status.value,
        "notes": appointment.notes,
        "doctor": _doctor(appointment.doctor),
        "medical_record": {
            "id": record.id,
            "status": record.status.value,
            "finalized_at": _iso(record.finalized_at),
            "subjective_preview": truncate_preview(record.subjective),
            "assessment_preview": truncate_preview(record.assessment),
            "plan_preview": truncate_preview(record.plan),
        } if record is not None else None,
        "payment": {
            "id": payment.id,
            "status": payment.status.value,
            "amount": payment.amount,
            "method": payment.method.value,
            "paid_at": _iso(payment.paid_at),
        } if payment is not None else None,
    }


def get_patient_history(
    db: Session,
    patient_id: int,
    limit: Optional[int] = None,
    status: Optional[Status] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Stats and a newest-first appointment timeline with SOAP previews."""
    patient = get_patient(db, patient_id)
    if limit is None:
        limit = HISTORY_DEFAULT_LIMIT
    if limit < 1:
        raise InvalidInputError("limit must be at least 1", limit=limit)
    limit = min(limit, HISTORY_MAX_LIMIT)
    now = ensure_utc(now) if now is not None else utc_now()

    query = db.query(models.Appointment).options(
        joinedload(models.Appointment.doctor),
        joinedload(models.Appointment.medical_record),
        joinedload(models.Appointment.payment),
    ).filter(models.Appointment.patient_id == patient_id)
    if status is not None:
        query = query.filter(models.Appointment.status == status)
    appointments = query.order_by(
        models.Appointment.scheduled_date.desc(), models.Appointment.id.desc()
    ).limit(limit).all()

    return {
        "patient": _patient_summary(patient),
        "stats": _history_stats(db, patient_id, now),
        "timeline": [_timeline_entry(appointment) for appointment in appointments],
    }
