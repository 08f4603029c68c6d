# backoffice/routers/medical_records.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import models, schemas, security
from ..database import get_db
from ..exceptions import NotFoundError
from ..services import medical_record_service, scheduling_service

# Front desk never reaches clinical content
router = APIRouter(
    prefix="/medical-records",
    tags=["Medical Records"],
    dependencies=[Depends(security.require_clinical_staff)],
    responses={404: {"description": "Not found"}},
)


def _record_for(db: Session, record_id: int, current_user: models.User) -> models.MedicalRecord:
    record = medical_record_service.get_record(db, record_id)
    security.assert_medical_record_access(current_user, record)
    return record


@router.post("/", response_model=schemas.MedicalRecordResponse, status_code=status.HTTP_201_CREATED)
def create_medical_record_endpoint(
    record: schemas.MedicalRecordCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_clinical_staff),
):
    appointment = scheduling_service.get_appointment(db, record.appointment_id)
    security.assert_appointment_access(current_user, appointment)
    return medical_record_service.create_record(db, record, actor=current_user)


@router.get("/appointment/{appointment_id}", response_model=schemas.MedicalRecordResponse)
def get_appointment_record_endpoint(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_clinical_staff),
):
    record = medical_record_service.get_record_for_appointment(db, appointment_id)
    if record is None:
        raise NotFoundError("MedicalRecord for appointment", appointment_id)
    security.assert_medical_record_access(current_user, record)
    return record


@router.get("/{record_id}", response_model=schemas.MedicalRecordResponse)
def get_medical_record_endpoint(
    record_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_clinical_staff),
):
    return _record_for(db, record_id, current_user)


@router.patch("/{record_id}", response_model=schemas.MedicalRecordResponse)
def update_medical_record_endpoint(
    record_id: int,
    record_update: schemas.MedicalRecordUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_clinical_staff),
):
    _record_for(db, record_id, current_user)
    return medical_record_service.update_record(db, record_id, record_update)


@router.post("/{record_id}/finalize", response_model=schemas.MedicalRecordResponse)
def finalize_medical_record_endpoint(
    record_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_clinical_staff),
):
    _record_for(db, record_id, current_user)
    return medical_record_service.finalize_record(db, record_id, actor=current_user)
