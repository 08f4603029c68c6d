# backoffice/services/dashboard_service.py
"""Live view of one clinic day: per-row flags and the day's KPI rollup.

``build_day_dashboard`` is pure over (appointments, now); the database only
supplies the rows.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from .. import models
from ..config import get_settings
from ..core.clinic_time import civil_date_of, ensure_utc, parse_civil_date, utc_now
from . import scheduling_service

Status = models.AppointmentStatus

UPCOMING_UNCONFIRMED_WINDOW = timedelta(minutes=60)
OVERDUE_IN_PROGRESS_AFTER = timedelta(minutes=90)

KPI_STATUS_KEYS = {
    Status.SCHEDULED: "scheduled",
    Status.CONFIRMED: "confirmed",
    Status.IN_PROGRESS: "in_progress",
    Status.COMPLETED: "completed",
    Status.NO_SHOW: "no_show",
    Status.CANCELLED: "cancelled",
}


def is_missing_soap(appointment) -> bool:
    record = appointment.medical_record
    if appointment.status == Status.IN_PROGRESS:
        return record is None
    if appointment.status == Status.COMPLETED:
        return record is None or record.status != models.MedicalRecordStatus.FINAL
    return False


def is_upcoming_unconfirmed(appointment, now: datetime) -> bool:
    if appointment.status != Status.SCHEDULED:
        return False
    lead = ensure_utc(appointment.scheduled_date) - now
    return timedelta(0) <= lead <= UPCOMING_UNCONFIRMED_WINDOW


def is_overdue_in_progress(appointment, now: datetime) -> bool:
    if appointment.status != Status.IN_PROGRESS:
        return False
    return now - ensure_utc(appointment.scheduled_date) > OVERDUE_IN_PROGRESS_AFTER


def row_flags(appointment, now: datetime) -> Dict[str, bool]:
    return {
        "missing_soap": is_missing_soap(appointment),
        "upcoming_unconfirmed": is_upcoming_unconfirmed(appointment, now),
        "overdue_in_progress": is_overdue_in_progress(appointment, now),
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value is not None else None


def build_row(appointment, now: datetime) -> Dict[str, Any]:
    start = ensure_utc(appointment.scheduled_date)
    patient = appointment.patient
    doctor = appointment.doctor
    payment = appointment.payment
    record = appointment.medical_record
    return {
        "id": appointment.id,
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(minutes=appointment.duration)).isoformat(),
        "duration_minutes": appointment.duration,
        "status": appointment.status.value,
        "type": appointment.type,
        "notes": appointment.notes,
        "patient": {
            "id": patient.id,
            "name": patient.name,
            "phone": patient.phone,
        } if patient is not None else None,
        "doctor": {"id": doctor.id, "name": doctor.name} if doctor is not None else None,
        "payment": {
            "id": payment.id,
            "amount": payment.amount,
            "method": payment.method.value,
            "status": payment.status.value,
        } if payment is not None else None,
        "medical_record": {
            "id": record.id,
            "status": record.status.value,
            "finalized_at": _iso(record.finalized_at),
        } if record is not None else None,
        "flags": row_flags(appointment, now),
    }


def compute_kpis(appointments: Iterable) -> Dict[str, int]:
    appointments = list(appointments)
    kpis = {"total": len(appointments)}
    kpis.update({key: 0 for key in KPI_STATUS_KEYS.values()})
    received_cents = 0
    pending_cents = 0

    for appointment in appointments:
        kpis[KPI_STATUS_KEYS[appointment.status]] += 1
        payment = appointment.payment
        if payment is None:
            continue
        if payment.status == models.PaymentStatus.PAID:
            received_cents += payment.amount
        elif payment.status == models.PaymentStatus.PENDING:
            pending_cents += payment.amount

    kpis["remaining"] = kpis["total"] - kpis["completed"] - kpis["cancelled"] - kpis["no_show"]
    kpis["received_cents"] = received_cents
    kpis["pending_cents"] = pending_cents
    return kpis


def build_day_dashboard(
    appointments: Iterable,
    now: datetime,
    civil_date: str,
    tz_name: str,
    doctor_id: Optional[int] = None,
    status: Optional[Status] = None,
) -> Dict[str, Any]:
    now = ensure_utc(now)
    ordered: List = sorted(appointments, key=lambda a: (ensure_utc(a.scheduled_date), a.id))
    return {
        "meta": {
            "date": civil_date,
            "timezone": tz_name,
            "doctor_id": doctor_id,
            "status": status.value if status is not None else None,
        },
        "kpis": compute_kpis(ordered),
        "rows": [build_row(appointment, now) for appointment in ordered],
    }


def get_day_dashboard(
    db: Session,
    civil_date: Optional[str] = None,
    tz_name: Optional[str] = None,
    doctor_id: Optional[int] = None,
    status: Optional[Status] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    tz_name = tz_name or get_settings().clinic_timezone
    now = now or utc_now()
    civil_date = parse_civil_date(civil_date).isoformat() if civil_date else civil_date_of(now, tz_name)
    appointments = scheduling_service.list_appointments_for_day(
        db, civil_date, tz_name, doctor_id=doctor_id, status=status
    )
    return build_day_dashboard(appointments, now, civil_date, tz_name, doctor_id, status)
