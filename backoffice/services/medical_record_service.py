# backoffice/services/medical_record_service.py
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..compliance_logger import compliance_logger
from ..core.clinic_time import utc_now
from ..exceptions import ConflictError, NotFoundError, PreconditionError

logger = logging.getLogger(__name__)

SOAP_FIELDS = ("subjective", "objective", "assessment", "plan")
PREVIEW_MAX_LENGTH = 160


def truncate_preview(text: Optional[str], max_length: int = PREVIEW_MAX_LENGTH) -> str:
    """Collapse whitespace and cut at a word boundary when one is near the end."""
    if not text:
        return ""
    collapsed = " ".join(text.split())
    if len(collapsed) <= max_length:
        return collapsed
    truncated = collapsed[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.6:
        truncated = truncated[:last_space]
    return truncated + "..."


def get_record(db: Session, record_id: int) -> models.MedicalRecord:
    record = db.get(models.MedicalRecord, record_id)
    if record is None:
        raise NotFoundError("MedicalRecord", record_id)
    return record


def get_record_for_appointment(db: Session, appointment_id: int) -> Optional[models.MedicalRecord]:
    return db.query(models.MedicalRecord).filter(
        models.MedicalRecord.appointment_id == appointment_id
    ).first()


def _new_draft(appointment: models.Appointment, **content) -> models.MedicalRecord:
    return models.MedicalRecord(
        appointment_id=appointment.id,
        patient_id=appointment.patient_id,
        doctor_id=appointment.doctor_id,
        date=appointment.scheduled_date,
        status=models.MedicalRecordStatus.DRAFT,
        **{field: content.get(field) or "" for field in SOAP_FIELDS},
    )


def create_record(db: Session, payload: schemas.MedicalRecordCreate, actor=None) -> models.MedicalRecord:
    """Open a DRAFT record for an appointment. One record per appointment."""
    appointment = db.get(models.Appointment, payload.appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment", payload.appointment_id)
    if get_record_for_appointment(db, appointment.id) is not None:
        raise ConflictError("A medical record already exists for this appointment", appointment_id=appointment.id)

    record = _new_draft(appointment, **payload.model_dump(include=set(SOAP_FIELDS)))
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Duplicate medical record for appointment {appointment.id}: {e}")
        raise ConflictError("A medical record already exists for this appointment", appointment_id=appointment.id) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating medical record for appointment {appointment.id}: {e}")
        raise

    compliance_logger.log_event(
        actor_user_id=getattr(actor, "id", None),
        actor_role=getattr(actor, "role", None),
        action="MEDICAL_RECORD_CREATE",
        entity_type="MEDICAL_RECORD",
        entity_id=record.id,
        metadata={"appointment_id": appointment.id},
    )
    return record


def ensure_draft_record(db: Session, appointment: models.Appointment) -> models.MedicalRecord:
    """Return the appointment's record, adding an empty DRAFT if it has none.

    Does not commit; the caller owns the transaction.
    """
    record = get_record_for_appointment(db, appointment.id)
    if record is not None:
        return record
    record = _new_draft(appointment)
    db.add(record)
    db.flush()
    logger.info(f"Opened draft medical record {record.id} for appointment {appointment.id}")
    return record


def update_record(db: Session, record_id: int, payload: schemas.MedicalRecordUpdate) -> models.MedicalRecord:
    record = get_record(db, record_id)
    if record.status == models.MedicalRecordStatus.FINAL:
        raise PreconditionError("A finalized medical record cannot be edited", medical_record_id=record.id)

    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(record, field, value or "")
    db.commit()
    db.refresh(record)
    return record


def finalize_record(db: Session, record_id: int, actor=None, now: Optional[datetime] = None) -> models.MedicalRecord:
    record = get_record(db, record_id)
    if record.status == models.MedicalRecordStatus.FINAL:
        raise PreconditionError("The medical record is already finalized", medical_record_id=record.id)

    record.status = models.MedicalRecordStatus.FINAL
    record.finalized_at = now or utc_now()
    record.finalized_by_id = getattr(actor, "id", None)
    db.commit()
    db.refresh(record)

    logger.info(f"Medical record {record.id} finalized")
    compliance_logger.log_status_change(
        actor, "MEDICAL_RECORD", record.id,
        models.MedicalRecordStatus.DRAFT, models.MedicalRecordStatus.FINAL,
        appointment_id=record.appointment_id,
    )
    return record
