# backoffice/services/finance_service.py
"""Money reporting over civil-date ranges.

Each payment status is filtered and bucketed by its own effective date:
PAID by ``paid_at``, PENDING and CANCELLED by the appointment's
``scheduled_date``, REFUNDED by ``refunded_at``. One query helper and one
bucketing helper serve every status so the rule cannot drift between them.
"""
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, contains_eager

from .. import models
from ..config import get_settings
from ..core.clinic_time import (
    DayRange,
    add_days,
    civil_date_of,
    days_between,
    enumerate_days,
    parse_civil_date,
    range_bounds,
    utc_now,
)
from ..exceptions import InvalidInputError

logger = logging.getLogger(__name__)

PaymentStatus = models.PaymentStatus

TOP_PENDING_SIZE = 10

AGE_BUCKETS = (
    ("0_7", 7),
    ("8_15", 15),
    ("16_30", 30),
    ("31+", None),
)

EFFECTIVE_DATE_COLUMNS = {
    PaymentStatus.PAID: models.Payment.paid_at,
    PaymentStatus.PENDING: models.Appointment.scheduled_date,
    PaymentStatus.CANCELLED: models.Appointment.scheduled_date,
    PaymentStatus.REFUNDED: models.Payment.refunded_at,
}

EFFECTIVE_DATE_SELECTORS: Dict[PaymentStatus, Callable[[models.Payment], Optional[datetime]]] = {
    PaymentStatus.PAID: lambda payment: payment.paid_at,
    PaymentStatus.PENDING: lambda payment: payment.appointment.scheduled_date,
    PaymentStatus.CANCELLED: lambda payment: payment.appointment.scheduled_date,
    PaymentStatus.REFUNDED: lambda payment: payment.refunded_at,
}


def payments_by_effective_date(
    db: Session,
    status: PaymentStatus,
    window: DayRange,
    doctor_id: Optional[int] = None,
    method: Optional[models.PaymentMethod] = None,
) -> List[models.Payment]:
    """Payments in ``status`` whose effective date falls in ``window``."""
    column = EFFECTIVE_DATE_COLUMNS[status]
    query = db.query(models.Payment).join(models.Payment.appointment).options(
        contains_eager(models.Payment.appointment).joinedload(models.Appointment.patient),
        contains_eager(models.Payment.appointment).joinedload(models.Appointment.doctor),
    ).filter(
        models.Payment.status == status,
        column.isnot(None),
        column >= window.start_utc,
        column < window.end_utc,
    )
    if doctor_id is not None:
        query = query.filter(models.Appointment.doctor_id == doctor_id)
    if method is not None:
        query = query.filter(models.Payment.method == method)
    return query.order_by(models.Appointment.scheduled_date, models.Payment.id).all()


def bucket_by(
    rows: Iterable[models.Payment],
    selector: Callable[[models.Payment], Optional[datetime]],
    tz_name: str,
) -> Dict[str, Dict[str, Any]]:
    """Group rows into civil-date buckets of ``{date, cents, count}``."""
    buckets: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        instant = selector(row)
        if instant is None:
            continue
        day = civil_date_of(instant, tz_name)
        bucket = buckets.setdefault(day, {"date": day, "cents": 0, "count": 0})
        bucket["cents"] += row.amount
        bucket["count"] += 1
    return buckets


def fill_series(buckets: Dict[str, Dict[str, Any]], days: List[str]) -> List[Dict[str, Any]]:
    return [buckets.get(day) or {"date": day, "cents": 0, "count": 0} for day in days]


def _totals(rows: List[models.Payment]):
    return sum(row.amount for row in rows), len(rows)


def _breakdown(paid: List[models.Payment], pending: List[models.Payment], key, init) -> List[Dict[str, Any]]:
    entries: Dict[Any, Dict[str, Any]] = OrderedDict()

    def entry_for(payment):
        k = key(payment)
        if k not in entries:
            entries[k] = {**init(payment), "received_cents": 0, "pending_cents": 0, "count_paid": 0, "count_pending": 0}
        return entries[k]

    for payment in paid:
        entry = entry_for(payment)
        entry["received_cents"] += payment.amount
        entry["count_paid"] += 1
    for payment in pending:
        entry = entry_for(payment)
        entry["pending_cents"] += payment.amount
        entry["count_pending"] += 1
    return list(entries.values())


def _person(person, with_phone: bool = False) -> Optional[Dict[str, Any]]:
    if person is None:
        return None
    summary = {"id": person.id, "name": person.name}
    if with_phone:
        summary["phone"] = person.phone
    return summary


def _count_appointments(db: Session, window: DayRange, status: models.AppointmentStatus, doctor_id: Optional[int]) -> int:
    query = db.query(func.count(models.Appointment.id)).filter(
        models.Appointment.status == status,
        models.Appointment.scheduled_date >= window.start_utc,
        models.Appointment.scheduled_date < window.end_utc,
    )
    if doctor_id is not None:
        query = query.filter(models.Appointment.doctor_id == doctor_id)
    return query.scalar() or 0


def get_summary(
    db: Session,
    start: str,
    end: str,
    tz_name: Optional[str] = None,
    doctor_id: Optional[int] = None,
) -> Dict[str, Any]:
    tz_name = tz_name or get_settings().clinic_timezone
    window = range_bounds(start, end, tz_name)
    start = parse_civil_date(start, "start").isoformat()
    end = parse_civil_date(end, "end").isoformat()

    rows = {status: payments_by_effective_date(db, status, window, doctor_id) for status in PaymentStatus}
    paid, pending = rows[PaymentStatus.PAID], rows[PaymentStatus.PENDING]

    received_cents, paid_count = _totals(paid)
    pending_cents, pending_count = _totals(pending)
    refunded_cents, refunded_count = _totals(rows[PaymentStatus.REFUNDED])
    cancelled_cents, cancelled_count = _totals(rows[PaymentStatus.CANCELLED])

    days = enumerate_days(start, end)
    daily_received = fill_series(bucket_by(paid, EFFECTIVE_DATE_SELECTORS[PaymentStatus.PAID], tz_name), days)
    daily_pending = fill_series(bucket_by(pending, EFFECTIVE_DATE_SELECTORS[PaymentStatus.PENDING], tz_name), days)

    by_method = _breakdown(
        paid, pending,
        key=lambda p: p.method,
        init=lambda p: {"method": p.method.value},
    )
    by_doctor = _breakdown(
        paid, pending,
        key=lambda p: p.appointment.doctor_id,
        init=lambda p: {"doctor_id": p.appointment.doctor_id, "doctor_name": p.appointment.doctor.name},
    )

    top_pending = sorted(pending, key=lambda p: (p.appointment.scheduled_date, p.id))[:TOP_PENDING_SIZE]

    logger.debug(f"Finance summary {start}..{end} ({tz_name}) doctor={doctor_id}: {paid_count} paid, {pending_count} pending")
    return {
        "meta": {"start": start, "end": end, "timezone": tz_name, "doctor_id": doctor_id},
        "kpis": {
            "received_cents": received_cents,
            "pending_cents": pending_cents,
            "refunded_cents": refunded_cents,
            "cancelled_cents": cancelled_cents,
            "paid_count": paid_count,
            "pending_count": pending_count,
            "refunded_count": refunded_count,
            "cancelled_count": cancelled_count,
            "no_show_count": _count_appointments(db, window, models.AppointmentStatus.NO_SHOW, doctor_id),
            "cancelled_appt_count": _count_appointments(db, window, models.AppointmentStatus.CANCELLED, doctor_id),
        },
        "series": {"daily_received": daily_received, "daily_pending": daily_pending},
        "breakdowns": {"by_method": by_method, "by_doctor": by_doctor},
        "top_pending": [
            {
                "appointment_id": p.appointment.id,
                "start_time": p.appointment.scheduled_date.isoformat(),
                "patient": _person(p.appointment.patient, with_phone=True),
                "doctor": _person(p.appointment.doctor),
                "payment": {"id": p.id, "amount": p.amount, "method": p.method.value, "status": p.status.value},
            }
            for p in top_pending
        ],
    }


def age_in_days(today: str, scheduled_date: datetime, tz_name: str) -> int:
    """Whole civil days between the visit and ``today``; never negative."""
    return max(0, days_between(civil_date_of(scheduled_date, tz_name), today))


def age_bucket(age_days: int) -> str:
    for name, upper in AGE_BUCKETS:
        if upper is None or age_days <= upper:
            return name
    raise ValueError(f"No aging bucket for {age_days} days")


def resolve_pagination(limit: Optional[int], offset: Optional[int]):
    settings = get_settings()
    if limit is None:
        limit = settings.receivables_default_limit
    if limit < 1:
        raise InvalidInputError("limit must be at least 1", limit=limit)
    limit = min(limit, settings.receivables_max_limit)
    offset = offset or 0
    if offset < 0:
        raise InvalidInputError("offset must not be negative", offset=offset)
    return limit, offset


def get_receivables(
    db: Session,
    start: Optional[str] = None,
    end: Optional[str] = None,
    tz_name: Optional[str] = None,
    doctor_id: Optional[int] = None,
    method: Optional[models.PaymentMethod] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = 0,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Pending payments aged against today's clinic date.

    Bucket totals cover the whole filtered set; only ``rows`` is paginated,
    after sorting oldest debt first and then by visit start.
    """
    settings = get_settings()
    tz_name = tz_name or settings.clinic_timezone
    limit, offset = resolve_pagination(limit, offset)
    today = civil_date_of(now or utc_now(), tz_name)
    end = parse_civil_date(end, "end").isoformat() if end else today
    start = parse_civil_date(start, "start").isoformat() if start else add_days(end, -(settings.receivables_default_window_days - 1))
    window = range_bounds(start, end, tz_name)

    pending = payments_by_effective_date(db, PaymentStatus.PENDING, window, doctor_id, method)

    buckets = OrderedDict((name, {"cents": 0, "count": 0}) for name, _ in AGE_BUCKETS)
    aged = []
    for payment in pending:
        days = age_in_days(today, payment.appointment.scheduled_date, tz_name)
        bucket = age_bucket(days)
        buckets[bucket]["cents"] += payment.amount
        buckets[bucket]["count"] += 1
        aged.append((payment, days, bucket))

    aged.sort(key=lambda item: (-item[1], item[0].appointment.scheduled_date, item[0].id))
    page = aged[offset:offset + limit]

    return {
        "meta": {
            "start": start,
            "end": end,
            "today": today,
            "timezone": tz_name,
            "doctor_id": doctor_id,
            "method": method.value if method is not None else None,
            "limit": limit,
            "offset": offset,
            "total": len(aged),
        },
        "kpis": {
            "pending_cents": sum(b["cents"] for b in buckets.values()),
            "pending_count": sum(b["count"] for b in buckets.values()),
            "buckets": dict(buckets),
        },
        "rows": [
            {
                "payment": {
                    "id": payment.id,
                    "amount": payment.amount,
                    "method": payment.method.value,
                    "status": payment.status.value,
                    "created_at": payment.created_at.isoformat() if payment.created_at else None,
                },
                "appointment": {
                    "id": payment.appointment.id,
                    "start_time": payment.appointment.scheduled_date.isoformat(),
                    "status": payment.appointment.status.value,
                    "type": payment.appointment.type,
                },
                "patient": _person(payment.appointment.patient, with_phone=True),
                "doctor": _person(payment.appointment.doctor),
                "age_days": days,
                "age_bucket": bucket,
            }
            for payment, days, bucket in page
        ],
    }
