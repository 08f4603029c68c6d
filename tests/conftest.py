# tests/conftest.py
import os
import secrets

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("CLINIC_TIMEZONE", "America/Sao_Paulo")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice import models
from backoffice.config import get_settings
from backoffice.database import Base, get_db
from backoffice.main import app


TZ = "America/Sao_Paulo"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


def _user(db, name, email, role):
    user = models.User(name=name, email=email, role=role, is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db):
    return _user(db, "Ana Admin", "admin@clinic.test", models.UserRole.ADMIN)


@pytest.fixture
def doctor(db):
    return _user(db, "Dr. Bruno Lima", "bruno@clinic.test", models.UserRole.DOCTOR)


@pytest.fixture
def other_doctor(db):
    return _user(db, "Dra. Carla Reis", "carla@clinic.test", models.UserRole.DOCTOR)


@pytest.fixture
def nurse(db):
    return _user(db, "Enf. Davi Souza", "davi@clinic.test", models.UserRole.NURSE)


@pytest.fixture
def receptionist(db):
    return _user(db, "Rita Recepcao", "rita@clinic.test", models.UserRole.RECEPTIONIST)


@pytest.fixture
def patient(db):
    patient = models.Patient(name="Maria Silva", phone="+5511999990000", email="maria@example.com")
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


@pytest.fixture
def make_appointment(db):
    def _make(doctor, patient, start, duration=30, status=models.AppointmentStatus.SCHEDULED,
              type="Consulta", notes=None):
        appointment = models.Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            scheduled_date=start,
            duration=duration,
            status=status,
            type=type,
            notes=notes,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment
    return _make


@pytest.fixture
def make_payment(db):
    def _make(appointment, amount=15000, status=models.PaymentStatus.PENDING,
              method=models.PaymentMethod.PIX, paid_at=None, refunded_at=None):
        payment = models.Payment(
            appointment_id=appointment.id,
            amount=amount,
            method=method,
            status=status,
            paid_at=paid_at,
            refunded_at=refunded_at,
        )
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment
    return _make


@pytest.fixture
def make_record(db):
    def _make(appointment, status=models.MedicalRecordStatus.DRAFT, **content):
        record = models.MedicalRecord(
            appointment_id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            date=appointment.scheduled_date,
            status=status,
            finalized_at=utc(2026, 2, 20, 18, 0) if status == models.MedicalRecordStatus.FINAL else None,
            **content,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record
    return _make


@pytest.fixture
def client(engine):
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_access_token(data: dict, expires_delta: timedelta) -> str:
    """Issue a bearer token the way the identity service does."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    to_encode = {**data, "exp": now + expires_delta, "type": "access", "iat": now, "jti": secrets.token_urlsafe(16)}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def auth_headers(user) -> dict:
    token = create_access_token({"user_id": user.id, "role": user.role.value}, expires_delta=timedelta(minutes=5))
    return {"Authorization": f"Bearer {token}"}
