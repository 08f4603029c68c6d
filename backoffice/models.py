# backoffice/models.py
from datetime import datetime, timedelta, timezone
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text, Boolean,
    Enum as SQLAlchemyEnum, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator
from .database import Base
import enum


def _utcnow():
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware instants, always stored and returned as UTC.

    SQLite drops tzinfo on the way in and out; PostgreSQL keeps it. Either way
    callers only ever see aware UTC datetimes.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes cannot be stored; attach a timezone first")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    DOCTOR = "DOCTOR"
    NURSE = "NURSE"
    RECEPTIONIST = "RECEPTIONIST"


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, enum.Enum):
    PIX = "PIX"
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    BANK_TRANSFER = "BANK_TRANSFER"


class MedicalRecordStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    FINAL = "FINAL"


class User(Base):
    """Staff member. Doctors and nurses are the clinicians appointments are booked with."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    role = Column(SQLAlchemyEnum(UserRole, name="user_role"), default=UserRole.RECEPTIONIST, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=_utcnow)

    appointments = relationship("Appointment", back_populates="doctor", foreign_keys="Appointment.doctor_id")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    birth_date = Column(Date, nullable=True)
    created_at = Column(UTCDateTime, default=_utcnow)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow)

    appointments = relationship("Appointment", back_populates="patient")
    medical_records = relationship("MedicalRecord", back_populates="patient")


class Appointment(Base):
    """A single booked visit. Cancellation is a status, never a delete."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_doctor_date", "doctor_id", "scheduled_date"),
        Index("idx_appointments_patient_date", "patient_id", "scheduled_date"),
        Index("idx_appointments_status_date", "status", "scheduled_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Start instant (UTC) and length; the end instant is derived
    scheduled_date = Column(UTCDateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=30)

    status = Column(SQLAlchemyEnum(AppointmentStatus, name="appointment_status"), default=AppointmentStatus.SCHEDULED, nullable=False)
    type = Column(String(50), nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, default=_utcnow)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow)

    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("User", back_populates="appointments", foreign_keys=[doctor_id])
    payment = relationship("Payment", back_populates="appointment", uselist=False)
    medical_record = relationship("MedicalRecord", back_populates="appointment", uselist=False)

    @property
    def end_time(self) -> datetime:
        return self.scheduled_date + timedelta(minutes=self.duration)


class Payment(Base):
    """One payment per appointment; amounts in integer minor units."""
    __tablename__ = "payments"
    __table_args__ = (
        Index("idx_payments_status_paid_at", "status", "paid_at"),
        Index("idx_payments_status_refunded_at", "status", "refunded_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, unique=True)
    amount = Column(Integer, nullable=False)
    method = Column(SQLAlchemyEnum(PaymentMethod, name="payment_method"), nullable=False)
    status = Column(SQLAlchemyEnum(PaymentStatus, name="payment_status"), default=PaymentStatus.PENDING, nullable=False)
    notes = Column(Text, nullable=True)

    # Populated only by the matching transition
    paid_at = Column(UTCDateTime, nullable=True)
    refunded_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=_utcnow)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow)

    appointment = relationship("Appointment", back_populates="payment")


class MedicalRecord(Base):
    """SOAP note for one appointment. Content is opaque to the scheduling core."""
    __tablename__ = "medical_records"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True, unique=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(UTCDateTime, default=_utcnow)

    subjective = Column(Text, nullable=False, default="")
    objective = Column(Text, nullable=False, default="")
    assessment = Column(Text, nullable=False, default="")
    plan = Column(Text, nullable=False, default="")

    status = Column(SQLAlchemyEnum(MedicalRecordStatus, name="medical_record_status"), default=MedicalRecordStatus.DRAFT, nullable=False)
    finalized_at = Column(UTCDateTime, nullable=True)
    finalized_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(UTCDateTime, default=_utcnow)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow)

    appointment = relationship("Appointment", back_populates="medical_record")
    patient = relationship("Patient", back_populates="medical_records")
    doctor = relationship("User", foreign_keys=[doctor_id])
    finalized_by = relationship("User", foreign_keys=[finalized_by_id])
