# backoffice/services/payment_service.py
import logging
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..compliance_logger import compliance_logger
from ..config import get_settings
from ..core.clinic_time import at_noon_utc, ensure_utc, parse_civil_date, utc_now
from ..exceptions import (
    ConflictError, InvalidInputError, InvalidTransitionError, NotFoundError, PaymentStateError, PreconditionError,
)

logger = logging.getLogger(__name__)

PaymentStatus = models.PaymentStatus

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.CANCELLED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# Appointments that can still carry a charge
BILLABLE_APPOINTMENT_STATUSES = (
    models.AppointmentStatus.SCHEDULED,
    models.AppointmentStatus.CONFIRMED,
    models.AppointmentStatus.IN_PROGRESS,
    models.AppointmentStatus.COMPLETED,
)


def get_payment(db: Session, payment_id: int) -> models.Payment:
    payment = db.get(models.Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment", payment_id)
    return payment


def get_payment_for_appointment(db: Session, appointment_id: int) -> Optional[models.Payment]:
    return db.query(models.Payment).filter(models.Payment.appointment_id == appointment_id).first()


def _validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidInputError("amount must be an integer number of minor units", amount=amount)
    if amount < 1:
        raise InvalidInputError("amount must be at least 1", amount=amount)
    return amount


def _save(db: Session, payment: models.Payment, action: str) -> models.Payment:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error during payment {action} ({payment.id}): {e}")
        raise
    db.refresh(payment)
    return payment


def _move(db: Session, payment: models.Payment, to_status: PaymentStatus, actor, **changes) -> models.Payment:
    from_status = payment.status
    if to_status not in PAYMENT_TRANSITIONS[from_status]:
        raise InvalidTransitionError("Payment", from_status, to_status)
    payment.status = to_status
    for field, value in changes.items():
        setattr(payment, field, value)
    _save(db, payment, to_status.value.lower())
    logger.info(f"Payment {payment.id} moved {from_status.value} -> {to_status.value}")
    compliance_logger.log_status_change(
        actor, "PAYMENT", payment.id, from_status, to_status,
        appointment_id=payment.appointment_id, amount=payment.amount,
    )
    return payment


def create_payment(db: Session, appointment_id: int, payload: schemas.PaymentCreate, actor=None) -> models.Payment:
    """Attach the single PENDING payment an appointment is allowed to have."""
    amount = _validate_amount(payload.amount)
    appointment = db.get(models.Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment", appointment_id)
    if appointment.status not in BILLABLE_APPOINTMENT_STATUSES:
        raise PreconditionError(
            f"Cannot charge an appointment in status {appointment.status.value}",
            appointment_id=appointment_id,
            appointment_status=appointment.status,
        )

    existing = get_payment_for_appointment(db, appointment_id)
    if existing is not None:
        raise ConflictError(
            "This appointment already has a payment",
            appointment_id=appointment_id,
            payment_id=existing.id,
            payment_status=existing.status,
        )

    payment = models.Payment(
        appointment_id=appointment_id,
        amount=amount,
        method=payload.method,
        status=PaymentStatus.PENDING,
        notes=payload.notes,
    )
    try:
        db.add(payment)
        db.commit()
        db.refresh(payment)
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Concurrent payment creation for appointment {appointment_id}: {e}")
        raise ConflictError("This appointment already has a payment", appointment_id=appointment_id) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating payment for appointment {appointment_id}: {e}")
        raise

    logger.info(f"Created payment {payment.id} for appointment {appointment_id}")
    compliance_logger.log_event(
        actor_user_id=getattr(actor, "id", None),
        actor_role=getattr(actor, "role", None),
        action="PAYMENT_CREATE",
        entity_type="PAYMENT",
        entity_id=payment.id,
        metadata={"appointment_id": appointment_id, "amount": amount, "method": payment.method},
    )
    return payment


def update_payment(db: Session, payment_id: int, payload: schemas.PaymentUpdate) -> models.Payment:
    payment = get_payment(db, payment_id)
    if payment.status != PaymentStatus.PENDING:
        raise PaymentStateError("update", payment.status, PaymentStatus.PENDING)

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("amount") is not None:
        payment.amount = _validate_amount(changes["amount"])
    if changes.get("method") is not None:
        payment.method = changes["method"]
    if "notes" in changes:
        payment.notes = changes["notes"]
    return _save(db, payment, "update")


def mark_paid(
    db: Session,
    payment_id: int,
    paid_date: Optional[str] = None,
    actor=None,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> models.Payment:
    """PENDING -> PAID. Already PAID is returned unchanged.

    ``paid_date`` is the clinic civil date the money came in; it is stored as
    local noon so the instant can never roll into a neighbouring day.
    """
    payment = get_payment(db, payment_id)
    if payment.status == PaymentStatus.PAID:
        return payment
    if payment.status != PaymentStatus.PENDING:
        raise PaymentStateError("mark as paid", payment.status, PaymentStatus.PENDING)

    if paid_date is not None:
        paid_at = at_noon_utc(parse_civil_date(paid_date, "paid_date"), tz_name or get_settings().clinic_timezone)
    else:
        paid_at = ensure_utc(now) if now is not None else utc_now()
    return _move(db, payment, PaymentStatus.PAID, actor, paid_at=paid_at)


def cancel_payment(db: Session, payment_id: int, actor=None) -> models.Payment:
    payment = get_payment(db, payment_id)
    if payment.status != PaymentStatus.PENDING:
        raise PaymentStateError("cancel", payment.status, PaymentStatus.PENDING)
    return _move(db, payment, PaymentStatus.CANCELLED, actor)


def refund_payment(db: Session, payment_id: int, actor=None, now: Optional[datetime] = None) -> models.Payment:
    payment = get_payment(db, payment_id)
    if payment.status != PaymentStatus.PAID:
        raise PaymentStateError("refund", payment.status, PaymentStatus.PAID)
    refunded_at = ensure_utc(now) if now is not None else utc_now()
    return _move(db, payment, PaymentStatus.REFUNDED, actor, refunded_at=refunded_at)
