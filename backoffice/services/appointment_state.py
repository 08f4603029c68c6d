# backoffice/services/appointment_state.py
"""Appointment lifecycle.

The legal moves live in ``ALLOWED_TRANSITIONS``; every status change in the
back-office goes through ``transition`` (directly or via the named helpers),
so there is exactly one place that decides what is allowed.
"""
import logging
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..compliance_logger import compliance_logger
from ..config import get_settings
from ..exceptions import InvalidTransitionError, NotFoundError, PreconditionError
from . import medical_record_service

logger = logging.getLogger(__name__)

Status = models.AppointmentStatus

ALLOWED_TRANSITIONS: Dict[Status, FrozenSet[Status]] = {
    Status.SCHEDULED: frozenset({Status.CONFIRMED, Status.IN_PROGRESS, Status.CANCELLED}),
    Status.CONFIRMED: frozenset({Status.IN_PROGRESS, Status.CANCELLED, Status.NO_SHOW}),
    Status.IN_PROGRESS: frozenset({Status.COMPLETED}),
    Status.COMPLETED: frozenset(),
    Status.CANCELLED: frozenset(),
    Status.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)


def validate_transition_table(table: Dict[Status, Iterable[Status]] = ALLOWED_TRANSITIONS) -> None:
    """Fail loudly if the table does not cover every status exactly once."""
    missing = set(Status) - set(table)
    if missing:
        raise ValueError(f"Transition table has no entry for: {sorted(s.value for s in missing)}")
    for source, targets in table.items():
        if not isinstance(source, Status):
            raise ValueError(f"Unknown source status in transition table: {source!r}")
        for target in targets:
            if not isinstance(target, Status):
                raise ValueError(f"Unknown target status {target!r} from {source.value}")
            if target == source:
                raise ValueError(f"Self transition on {source.value} is not allowed")


validate_transition_table()


def can_transition(from_status: Status, to_status: Status) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def all_pairs() -> Iterable[Tuple[Status, Status]]:
    for source in Status:
        for target in Status:
            yield source, target


def assert_transition(from_status: Status, to_status: Status) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError("Appointment", from_status, to_status)


def _load(db: Session, appointment_id: int) -> models.Appointment:
    appointment = db.get(models.Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment", appointment_id)
    return appointment


def _commit_status(db: Session, appointment: models.Appointment, from_status: Status, actor) -> models.Appointment:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error changing status of appointment {appointment.id}: {e}")
        raise
    db.refresh(appointment)
    logger.info(f"Appointment {appointment.id} moved {from_status.value} -> {appointment.status.value}")
    compliance_logger.log_status_change(actor, "APPOINTMENT", appointment.id, from_status, appointment.status)
    return appointment


def transition(db: Session, appointment_id: int, to_status: Status, actor=None) -> models.Appointment:
    """Move an appointment to ``to_status``.

    IN_PROGRESS and COMPLETED carry side effects and preconditions, so they are
    routed through ``start_encounter`` and ``complete_encounter``.
    """
    to_status = Status(to_status)
    if to_status == Status.IN_PROGRESS:
        return start_encounter(db, appointment_id, actor)
    if to_status == Status.COMPLETED:
        return complete_encounter(db, appointment_id, actor)

    appointment = _load(db, appointment_id)
    from_status = appointment.status
    assert_transition(from_status, to_status)
    appointment.status = to_status
    return _commit_status(db, appointment, from_status, actor)


def confirm(db: Session, appointment_id: int, actor=None) -> models.Appointment:
    return transition(db, appointment_id, Status.CONFIRMED, actor)


def cancel(db: Session, appointment_id: int, actor=None) -> models.Appointment:
    return transition(db, appointment_id, Status.CANCELLED, actor)


def mark_no_show(db: Session, appointment_id: int, actor=None) -> models.Appointment:
    return transition(db, appointment_id, Status.NO_SHOW, actor)


def start_encounter(db: Session, appointment_id: int, actor=None) -> models.Appointment:
    appointment = _load(db, appointment_id)
    from_status = appointment.status
    assert_transition(from_status, Status.IN_PROGRESS)
    appointment.status = Status.IN_PROGRESS
    medical_record_service.ensure_draft_record(db, appointment)
    return _commit_status(db, appointment, from_status, actor)


def is_payment_exempt(appointment_type: Optional[str]) -> bool:
    exempt = {t.strip().lower() for t in get_settings().payment_exempt_appointment_types}
    return (appointment_type or "").strip().lower() in exempt


def complete_encounter(db: Session, appointment_id: int, actor=None) -> models.Appointment:
    """IN_PROGRESS -> COMPLETED, gated on a FINAL record and, unless the
    appointment type is exempt, a PAID payment."""
    appointment = _load(db, appointment_id)
    from_status = appointment.status
    assert_transition(from_status, Status.COMPLETED)

    record = medical_record_service.get_record_for_appointment(db, appointment.id)
    if record is None or record.status != models.MedicalRecordStatus.FINAL:
        raise PreconditionError(
            "Finalize the medical record before completing the appointment",
            appointment_id=appointment.id,
            rule="medical_record_final",
            medical_record_status=record.status if record is not None else None,
        )

    if not is_payment_exempt(appointment.type):
        payment = appointment.payment
        if payment is None or payment.status != models.PaymentStatus.PAID:
            raise PreconditionError(
                "Mark the payment as paid before completing the appointment",
                appointment_id=appointment.id,
                rule="payment_paid",
                payment_status=payment.status if payment is not None else None,
            )

    appointment.status = Status.COMPLETED
    return _commit_status(db, appointment, from_status, actor)
