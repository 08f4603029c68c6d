# backoffice/routers/payments.py
from typing import Optional

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from .. import models, schemas, security
from ..database import get_db
from ..exceptions import NotFoundError
from ..services import payment_service, scheduling_service

router = APIRouter(
    prefix="/payments",
    tags=["Payments"],
    dependencies=[Depends(security.get_current_user)],
    responses={404: {"description": "Not found"}},
)


def _payment_for(db: Session, payment_id: int, current_user: models.User) -> models.Payment:
    payment = payment_service.get_payment(db, payment_id)
    security.assert_appointment_access(current_user, payment.appointment)
    return payment


@router.get("/appointment/{appointment_id}", response_model=schemas.PaymentResponse)
def get_appointment_payment_endpoint(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    appointment = scheduling_service.get_appointment(db, appointment_id)
    security.assert_appointment_access(current_user, appointment)
    payment = payment_service.get_payment_for_appointment(db, appointment_id)
    if payment is None:
        raise NotFoundError("Payment for appointment", appointment_id)
    return payment


@router.post(
    "/appointment/{appointment_id}",
    response_model=schemas.PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_payment_endpoint(
    appointment_id: int,
    payment: schemas.PaymentCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_front_desk),
):
    return payment_service.create_payment(db, appointment_id, payment, actor=current_user)


@router.get("/{payment_id}", response_model=schemas.PaymentResponse)
def get_payment_endpoint(
    payment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    return _payment_for(db, payment_id, current_user)


@router.patch("/{payment_id}", response_model=schemas.PaymentResponse)
def update_payment_endpoint(
    payment_id: int,
    payment_update: schemas.PaymentUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_front_desk),
):
    return payment_service.update_payment(db, payment_id, payment_update)


@router.post("/{payment_id}/mark-paid", response_model=schemas.PaymentResponse)
def mark_paid_endpoint(
    payment_id: int,
    body: Optional[schemas.MarkPaid] = Body(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_front_desk),
):
    """Record the payment as received. ``paid_date`` backdates to local noon of that day."""
    paid_date = body.paid_date if body is not None else None
    return payment_service.mark_paid(db, payment_id, paid_date=paid_date, actor=current_user)


@router.post("/{payment_id}/cancel", response_model=schemas.PaymentResponse)
def cancel_payment_endpoint(
    payment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_front_desk),
):
    return payment_service.cancel_payment(db, payment_id, actor=current_user)


@router.post("/{payment_id}/refund", response_model=schemas.PaymentResponse)
def refund_payment_endpoint(
    payment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_admin),
):
    return payment_service.refund_payment(db, payment_id, actor=current_user)
