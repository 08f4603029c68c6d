# backoffice/schemas.py
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import (
    AppointmentStatus, PaymentStatus, PaymentMethod, MedicalRecordStatus,
)

CIVIL_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


# --- Base Schemas ---
class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    # Naive instants from clients are taken as UTC
    if v is None:
        return v
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


# --- Summaries embedded in other responses ---
class UserSummary(BaseSchema):
    id: int
    name: str


class PatientSummary(BaseSchema):
    id: int
    name: str
    phone: Optional[str] = None


# --- Appointment Schemas ---
class AppointmentCreate(BaseModel):
    patient_id: int
    doctor_id: int
    scheduled_date: datetime = Field(..., description="Start instant; naive values are read as UTC")
    duration: Optional[int] = Field(None, description="Minutes; defaults to the clinic default")
    type: str = Field(..., min_length=1, max_length=50, examples=["Consulta", "Retorno", "Exame"])
    notes: Optional[str] = None

    normalize_scheduled_date = field_validator("scheduled_date")(_as_utc)


class AppointmentUpdate(BaseModel):
    patient_id: Optional[int] = None
    doctor_id: Optional[int] = None
    scheduled_date: Optional[datetime] = None
    duration: Optional[int] = None
    type: Optional[str] = Field(None, min_length=1, max_length=50)
    notes: Optional[str] = None

    normalize_scheduled_date = field_validator("scheduled_date")(_as_utc)


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseSchema):
    id: int
    patient_id: int
    doctor_id: int
    scheduled_date: datetime
    end_time: datetime
    duration: int
    status: AppointmentStatus
    type: str
    notes: Optional[str] = None
    patient: Optional[PatientSummary] = None
    doctor: Optional[UserSummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- Payment Schemas ---
class PaymentCreate(BaseModel):
    amount: int = Field(..., ge=1, strict=True, description="Amount in minor currency units")
    method: PaymentMethod
    notes: Optional[str] = None


class PaymentUpdate(BaseModel):
    amount: Optional[int] = Field(None, ge=1, strict=True)
    method: Optional[PaymentMethod] = None
    notes: Optional[str] = None


class MarkPaid(BaseModel):
    paid_date: Optional[str] = Field(
        None,
        pattern=CIVIL_DATE_PATTERN,
        description="Clinic wall-date the money was received; stored as local noon in UTC",
    )


class PaymentResponse(BaseSchema):
    id: int
    appointment_id: int
    amount: int
    method: PaymentMethod
    status: PaymentStatus
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# --- Medical Record Schemas ---
class MedicalRecordCreate(BaseModel):
    appointment_id: int
    subjective: str = ""
    objective: str = ""
    assessment: str = ""
    plan: str = ""


class MedicalRecordUpdate(BaseModel):
    subjective: Optional[str] = None
    objective: Optional[str] = None
    assessment: Optional[str] = None
    plan: Optional[str] = None


class MedicalRecordResponse(BaseSchema):
    id: int
    appointment_id: Optional[int] = None
    patient_id: int
    doctor_id: int
    subjective: str
    objective: str
    assessment: str
    plan: str
    status: MedicalRecordStatus
    finalized_at: Optional[datetime] = None
    finalized_by_id: Optional[int] = None


class AppointmentDetail(AppointmentResponse):
    payment: Optional[PaymentResponse] = None
    medical_record: Optional[MedicalRecordResponse] = None
