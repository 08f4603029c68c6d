# backoffice/routers/patients.py
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas, security
from ..database import get_db
from ..redaction import maybe_redact_for_receptionist, redact_patient_detail, redact_patient_history
from ..services import patient_service

router = APIRouter(
    prefix="/patients",
    tags=["Patients"],
    dependencies=[Depends(security.get_current_user)],
    responses={404: {"description": "Not found"}},
)


@router.get("/", response_model=List[schemas.PatientSummary])
def list_patients_endpoint(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    return patient_service.list_patients(db, current_user)


@router.get("/{patient_id}")
def get_patient_endpoint(
    patient_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    patient_service.get_patient(db, patient_id)
    security.assert_patient_access(db, current_user, patient_id)
    payload = patient_service.get_patient_detail(db, patient_id)
    return maybe_redact_for_receptionist(current_user.role, payload, redact_patient_detail)


@router.get("/{patient_id}/history")
def get_patient_history_endpoint(
    patient_id: int,
    limit: Optional[int] = None,
    status: Optional[models.AppointmentStatus] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    """Reverse-chronological timeline with SOAP previews and payment status."""
    patient_service.get_patient(db, patient_id)
    security.assert_patient_access(db, current_user, patient_id)
    payload = patient_service.get_patient_history(db, patient_id, limit=limit, status=status)
    return maybe_redact_for_receptionist(current_user.role, payload, redact_patient_history)
