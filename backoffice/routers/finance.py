# backoffice/routers/finance.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import models, security
from ..database import get_db
from ..services import finance_service

router = APIRouter(
    prefix="/finance",
    tags=["Finance"],
    dependencies=[Depends(security.get_current_user)],
)

# Nurses have no view of clinic money
require_finance_viewer = security.require_role(
    models.UserRole.ADMIN, models.UserRole.RECEPTIONIST, models.UserRole.DOCTOR
)


@router.get("/summary")
def get_finance_summary_endpoint(
    start: str = Query(..., description="First civil date, YYYY-MM-DD"),
    end: str = Query(..., description="Last civil date, YYYY-MM-DD (inclusive)"),
    tz: Optional[str] = Query(None, description="IANA timezone; defaults to the clinic timezone"),
    doctor_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_finance_viewer),
):
    return finance_service.get_summary(
        db, start, end, tz_name=tz, doctor_id=security.scoped_doctor_id(current_user, doctor_id)
    )


@router.get("/receivables")
def get_receivables_endpoint(
    start: Optional[str] = Query(None, description="Defaults to 29 days before end"),
    end: Optional[str] = Query(None, description="Defaults to today in the requested timezone"),
    tz: Optional[str] = None,
    doctor_id: Optional[int] = None,
    method: Optional[models.PaymentMethod] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_finance_viewer),
):
    """Pending payments with aging buckets. Totals ignore pagination."""
    return finance_service.get_receivables(
        db,
        start=start,
        end=end,
        tz_name=tz,
        doctor_id=security.scoped_doctor_id(current_user, doctor_id),
        method=method,
        limit=limit,
        offset=offset,
    )
