# tests/test_dashboard.py
from datetime import timedelta
from types import SimpleNamespace

import pytest

from backoffice import models
from backoffice.services.dashboard_service import build_day_dashboard, compute_kpis, get_day_dashboard, row_flags

from conftest import TZ, utc

Status = models.AppointmentStatus

NOW = utc(2026, 2, 20, 15, 0)   # 12:00 in Sao Paulo


def fake_appointment(id, start, status=Status.SCHEDULED, payment=None, record=None, duration=30):
    return SimpleNamespace(
        id=id,
        scheduled_date=start,
        duration=duration,
        status=status,
        type="Consulta",
        notes="paciente pediu retorno",
        patient=SimpleNamespace(id=1, name="Maria Silva", phone="+5511999990000"),
        doctor=SimpleNamespace(id=2, name="Dr. Bruno Lima"),
        payment=payment,
        medical_record=record,
    )


def fake_payment(amount, status):
    return SimpleNamespace(id=amount, amount=amount, method=models.PaymentMethod.PIX, status=status)


def fake_record(status):
    return SimpleNamespace(id=7, status=status, finalized_at=None)


class TestFlags:
    @pytest.mark.parametrize(
        "lead, expected",
        [
            (timedelta(minutes=-1), False),
            (timedelta(0), True),
            (timedelta(minutes=30), True),
            (timedelta(minutes=60), True),
            (timedelta(minutes=61), False),
        ],
    )
    def test_upcoming_unconfirmed_window(self, lead, expected):
        appointment = fake_appointment(1, NOW + lead)
        assert row_flags(appointment, NOW)["upcoming_unconfirmed"] is expected

    def test_confirmed_appointments_are_never_upcoming_unconfirmed(self):
        appointment = fake_appointment(1, NOW + timedelta(minutes=10), status=Status.CONFIRMED)
        assert row_flags(appointment, NOW)["upcoming_unconfirmed"] is False

    @pytest.mark.parametrize(
        "elapsed, expected",
        [(timedelta(minutes=89), False), (timedelta(minutes=90), False), (timedelta(minutes=91), True)],
    )
    def test_overdue_in_progress(self, elapsed, expected):
        appointment = fake_appointment(1, NOW - elapsed, status=Status.IN_PROGRESS, record=fake_record(models.MedicalRecordStatus.DRAFT))
        assert row_flags(appointment, NOW)["overdue_in_progress"] is expected

    @pytest.mark.parametrize(
        "status, record, expected",
        [
            (Status.IN_PROGRESS, None, True),
            (Status.IN_PROGRESS, models.MedicalRecordStatus.DRAFT, False),
            (Status.COMPLETED, None, True),
            (Status.COMPLETED, models.MedicalRecordStatus.DRAFT, True),
            (Status.COMPLETED, models.MedicalRecordStatus.FINAL, False),
            (Status.SCHEDULED, None, False),
            (Status.CANCELLED, None, False),
        ],
    )
    def test_missing_soap(self, status, record, expected):
        appointment = fake_appointment(1, NOW, status=status, record=fake_record(record) if record else None)
        assert row_flags(appointment, NOW)["missing_soap"] is expected


class TestKpis:
    def test_counts_add_up(self):
        appointments = [
            fake_appointment(1, NOW, Status.SCHEDULED),
            fake_appointment(2, NOW, Status.CONFIRMED, payment=fake_payment(5000, models.PaymentStatus.PENDING)),
            fake_appointment(3, NOW, Status.IN_PROGRESS),
            fake_appointment(4, NOW, Status.COMPLETED, payment=fake_payment(15000, models.PaymentStatus.PAID)),
            fake_appointment(5, NOW, Status.NO_SHOW),
            fake_appointment(6, NOW, Status.CANCELLED, payment=fake_payment(9000, models.PaymentStatus.CANCELLED)),
            fake_appointment(7, NOW, Status.COMPLETED, payment=fake_payment(3000, models.PaymentStatus.REFUNDED)),
        ]
        kpis = compute_kpis(appointments)
        per_status = sum(kpis[k] for k in ("scheduled", "confirmed", "in_progress", "completed", "no_show", "cancelled"))
        assert kpis["total"] == per_status == 7
        assert kpis["remaining"] == kpis["scheduled"] + kpis["confirmed"] + kpis["in_progress"] == 3
        assert kpis["received_cents"] == 15000
        assert kpis["pending_cents"] == 5000

    def test_empty_day(self):
        kpis = compute_kpis([])
        assert kpis["total"] == 0
        assert kpis["remaining"] == 0
        assert kpis["received_cents"] == kpis["pending_cents"] == 0


def test_rows_are_ordered_by_start_then_id():
    appointments = [
        fake_appointment(9, NOW + timedelta(hours=1)),
        fake_appointment(5, NOW),
        fake_appointment(3, NOW),
    ]
    dashboard = build_day_dashboard(appointments, NOW, "2026-02-20", TZ)
    assert [row["id"] for row in dashboard["rows"]] == [3, 5, 9]
    assert dashboard["meta"] == {"date": "2026-02-20", "timezone": TZ, "doctor_id": None, "status": None}


def test_row_shape():
    appointment = fake_appointment(
        1, NOW, Status.COMPLETED,
        payment=fake_payment(15000, models.PaymentStatus.PAID),
        record=fake_record(models.MedicalRecordStatus.FINAL),
    )
    row = build_day_dashboard([appointment], NOW, "2026-02-20", TZ)["rows"][0]
    assert row["start_time"] == "2026-02-20T15:00:00+00:00"
    assert row["end_time"] == "2026-02-20T15:30:00+00:00"
    assert row["payment"] == {"id": 15000, "amount": 15000, "method": "PIX", "status": "PAID"}
    assert row["medical_record"]["status"] == "FINAL"
    assert row["patient"]["phone"] == "+5511999990000"


def test_day_dashboard_from_storage(db, doctor, other_doctor, patient, make_appointment, make_payment):
    morning = make_appointment(doctor, patient, utc(2026, 2, 20, 12, 0))
    make_payment(morning, amount=20000, status=models.PaymentStatus.PAID, paid_at=utc(2026, 2, 20, 12, 30))
    make_appointment(doctor, patient, utc(2026, 2, 20, 15, 30), status=Status.CONFIRMED)
    make_appointment(other_doctor, patient, utc(2026, 2, 20, 13, 0))
    # 23:30 on the 19th locally
    make_appointment(doctor, patient, utc(2026, 2, 20, 2, 30))
    # 00:10 on the 21st locally
    make_appointment(doctor, patient, utc(2026, 2, 21, 3, 10))

    dashboard = get_day_dashboard(db, "2026-02-20", TZ, now=NOW)
    assert dashboard["kpis"]["total"] == 3
    assert dashboard["kpis"]["received_cents"] == 20000

    mine = get_day_dashboard(db, "2026-02-20", TZ, doctor_id=doctor.id, now=NOW)
    assert [row["start_time"] for row in mine["rows"]] == [
        "2026-02-20T12:00:00+00:00",
        "2026-02-20T15:30:00+00:00",
    ]
    assert mine["meta"]["doctor_id"] == doctor.id


def test_day_dashboard_defaults_to_today_in_clinic_time(db, doctor, patient, make_appointment):
    make_appointment(doctor, patient, utc(2026, 2, 20, 2, 0))
    # 01:00 UTC on the 20th is still the 19th in Sao Paulo
    dashboard = get_day_dashboard(db, tz_name=TZ, now=utc(2026, 2, 20, 1, 0))
    assert dashboard["meta"]["date"] == "2026-02-19"
    assert dashboard["kpis"]["total"] == 1
