# tests/test_api.py
import json

import pytest
from httpx import ASGITransport, AsyncClient

from backoffice import models
from backoffice.main import app

from conftest import auth_headers, utc

API = "/api/v1"


@pytest.fixture
def visit(doctor, patient, make_appointment, make_record, make_payment):
    appointment = make_appointment(
        doctor, patient, utc(2026, 2, 20, 13, 0),
        status=models.AppointmentStatus.COMPLETED, notes="paciente ansiosa",
    )
    make_record(appointment, status=models.MedicalRecordStatus.FINAL, subjective="Cefaleia ha tres dias")
    make_payment(appointment, status=models.PaymentStatus.PAID, paid_at=utc(2026, 2, 20, 13, 40))
    return appointment


def test_health(client):
    response = client.get(f"{API}/health")
    assert response.status_code == 200
    assert response.json()["database"] == "ok"


def test_requests_without_token_are_rejected(client):
    response = client.get(f"{API}/appointments/day", params={"date": "2026-02-20"})
    assert response.status_code == 401


def test_booking_and_conflict(client, receptionist, doctor, patient):
    body = {
        "patient_id": patient.id,
        "doctor_id": doctor.id,
        "scheduled_date": "2026-02-20T12:00:00Z",
        "type": "Consulta",
    }
    created = client.post(f"{API}/appointments/", json=body, headers=auth_headers(receptionist))
    assert created.status_code == 201
    assert created.json()["status"] == "SCHEDULED"
    assert created.json()["duration"] == 30

    clash = client.post(
        f"{API}/appointments/",
        json={**body, "scheduled_date": "2026-02-20T12:15:00Z"},
        headers=auth_headers(receptionist),
    )
    assert clash.status_code == 409
    payload = clash.json()
    assert payload["error"] == "SCHEDULING_CONFLICT"
    assert payload["retryable"] is True
    assert payload["detail"]["conflicting_appointment_id"] == created.json()["id"]


def test_clinician_cannot_book_for_a_colleague(client, doctor, other_doctor, patient):
    response = client.post(
        f"{API}/appointments/",
        json={
            "patient_id": patient.id,
            "doctor_id": other_doctor.id,
            "scheduled_date": "2026-02-20T12:00:00Z",
            "type": "Consulta",
        },
        headers=auth_headers(doctor),
    )
    assert response.status_code == 403


def test_malformed_dashboard_date(client, admin):
    response = client.get(f"{API}/appointments/day", params={"date": "20-02-2026"}, headers=auth_headers(admin))
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


def test_receptionist_dashboard_is_redacted(client, receptionist, admin, visit):
    params = {"date": "2026-02-20", "tz": "America/Sao_Paulo"}
    front_desk = client.get(f"{API}/appointments/day", params=params, headers=auth_headers(receptionist))
    assert front_desk.status_code == 200
    assert "Cefaleia" not in front_desk.text
    assert "paciente ansiosa" not in front_desk.text
    assert front_desk.json()["rows"][0]["payment"]["status"] == "PAID"

    full = client.get(f"{API}/appointments/day", params=params, headers=auth_headers(admin))
    assert full.json()["rows"][0]["notes"] == "paciente ansiosa"


def test_receptionist_patient_views_are_redacted(client, receptionist, patient, visit):
    detail = client.get(f"{API}/patients/{patient.id}", headers=auth_headers(receptionist))
    assert detail.status_code == 200
    assert "medical_records" not in detail.json()

    history = client.get(f"{API}/patients/{patient.id}/history", headers=auth_headers(receptionist))
    assert history.status_code == 200
    entry = history.json()["timeline"][0]
    assert entry["medical_record"] is None
    assert "Cefaleia" not in json.dumps(history.json())

    appointment = client.get(f"{API}/appointments/{visit.id}", headers=auth_headers(receptionist))
    assert appointment.status_code == 200
    assert "medical_record" not in appointment.json()
    assert "notes" not in appointment.json()


def test_receptionist_cannot_open_medical_records(client, receptionist, visit):
    response = client.get(f"{API}/medical-records/appointment/{visit.id}", headers=auth_headers(receptionist))
    assert response.status_code == 403


def test_doctor_sees_only_own_appointments(client, doctor, other_doctor, visit):
    assert client.get(f"{API}/appointments/{visit.id}", headers=auth_headers(doctor)).status_code == 200
    assert client.get(f"{API}/appointments/{visit.id}", headers=auth_headers(other_doctor)).status_code == 403

    dashboard = client.get(
        f"{API}/appointments/day",
        params={"date": "2026-02-20", "doctor_id": doctor.id},
        headers=auth_headers(other_doctor),
    )
    assert dashboard.json()["meta"]["doctor_id"] == other_doctor.id
    assert dashboard.json()["rows"] == []


def test_invalid_transition_is_422(client, receptionist, visit):
    response = client.post(f"{API}/appointments/{visit.id}/cancel", headers=auth_headers(receptionist))
    assert response.status_code == 422
    assert response.json()["detail"]["from_status"] == "COMPLETED"


def test_receptionist_cannot_start_an_encounter(client, receptionist, doctor, patient, make_appointment):
    appointment = make_appointment(doctor, patient, utc(2026, 2, 20, 13, 0), status=models.AppointmentStatus.CONFIRMED)
    response = client.patch(
        f"{API}/appointments/{appointment.id}/status",
        json={"status": "IN_PROGRESS"},
        headers=auth_headers(receptionist),
    )
    assert response.status_code == 403


def test_payment_flow(client, receptionist, doctor, patient, make_appointment):
    appointment = make_appointment(doctor, patient, utc(2026, 2, 20, 13, 0))
    created = client.post(
        f"{API}/payments/appointment/{appointment.id}",
        json={"amount": 15000, "method": "PIX"},
        headers=auth_headers(receptionist),
    )
    assert created.status_code == 201
    payment_id = created.json()["id"]

    duplicate = client.post(
        f"{API}/payments/appointment/{appointment.id}",
        json={"amount": 15000, "method": "PIX"},
        headers=auth_headers(receptionist),
    )
    assert duplicate.status_code == 409

    paid = client.post(
        f"{API}/payments/{payment_id}/mark-paid",
        json={"paid_date": "2026-02-20"},
        headers=auth_headers(receptionist),
    )
    assert paid.status_code == 200
    assert paid.json()["status"] == "PAID"
    assert paid.json()["paid_at"].startswith("2026-02-20T15:00:00")

    edit = client.patch(f"{API}/payments/{payment_id}", json={"amount": 1}, headers=auth_headers(receptionist))
    assert edit.status_code == 422

    refund = client.post(f"{API}/payments/{payment_id}/refund", headers=auth_headers(receptionist))
    assert refund.status_code == 403


def test_finance_endpoints(client, admin, nurse, doctor, other_doctor, patient, make_appointment, make_payment):
    mine = make_appointment(doctor, patient, utc(2026, 2, 17, 13, 0))
    make_payment(mine, amount=12000)
    theirs = make_appointment(other_doctor, patient, utc(2026, 2, 17, 14, 0))
    make_payment(theirs, amount=5000)

    params = {"start": "2026-02-01", "end": "2026-02-28", "tz": "America/Sao_Paulo"}
    summary = client.get(f"{API}/finance/summary", params=params, headers=auth_headers(admin))
    assert summary.status_code == 200
    assert summary.json()["kpis"]["pending_cents"] == 17000

    scoped = client.get(f"{API}/finance/summary", params=params, headers=auth_headers(doctor))
    assert scoped.json()["kpis"]["pending_cents"] == 12000

    receivables = client.get(
        f"{API}/finance/receivables",
        params={**params, "limit": 1},
        headers=auth_headers(admin),
    )
    assert receivables.status_code == 200
    assert receivables.json()["meta"]["total"] == 2
    assert len(receivables.json()["rows"]) == 1

    bad_limit = client.get(f"{API}/finance/receivables", params={**params, "limit": 0}, headers=auth_headers(admin))
    assert bad_limit.status_code == 400

    assert client.get(f"{API}/finance/summary", params=params, headers=auth_headers(nurse)).status_code == 403


@pytest.fixture
async def async_client(client):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_dashboard_over_asgi(async_client, admin, doctor, patient, make_appointment):
    make_appointment(doctor, patient, utc(2026, 2, 20, 13, 0))
    response = await async_client.get(
        f"{API}/appointments/day",
        params={"date": "2026-02-20"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["meta"]["timezone"] == "America/Sao_Paulo"
    assert data["kpis"]["total"] == 1


SECRET_NOTE = "paciente relata ideacao; acompanhar"


@pytest.mark.parametrize(
    "method, path, body",
    [
        ("patch", "", {"type": "Retorno"}),
        ("patch", "", {"scheduled_date": "2026-02-20T16:00:00Z"}),
        ("patch", "/status", {"status": "CONFIRMED"}),
        ("patch", "/status", {"status": "CANCELLED"}),
        ("post", "/confirm", None),
        ("post", "/cancel", None),
    ],
)
def test_receptionist_write_responses_are_redacted(
    client, receptionist, doctor, patient, make_appointment, make_record, method, path, body
):
    appointment = make_appointment(doctor, patient, utc(2026, 2, 20, 13, 0), notes=SECRET_NOTE)
    make_record(appointment, subjective="Cefaleia ha tres dias")
    response = client.request(
        method.upper(),
        f"{API}/appointments/{appointment.id}{path}",
        json=body,
        headers=auth_headers(receptionist),
    )
    assert response.status_code == 200
    assert SECRET_NOTE not in response.text
    assert "Cefaleia" not in response.text
    assert "notes" not in response.json()
    assert "medical_record" not in response.json()


def test_receptionist_no_show_response_is_redacted(client, receptionist, doctor, patient, make_appointment):
    appointment = make_appointment(
        doctor, patient, utc(2026, 2, 20, 13, 0), status=models.AppointmentStatus.CONFIRMED, notes=SECRET_NOTE
    )
    response = client.post(f"{API}/appointments/{appointment.id}/no-show", headers=auth_headers(receptionist))
    assert response.status_code == 200
    assert response.json()["status"] == "NO_SHOW"
    assert SECRET_NOTE not in response.text


def test_receptionist_booking_response_is_redacted(client, receptionist, doctor, patient):
    response = client.post(
        f"{API}/appointments/",
        json={
            "patient_id": patient.id,
            "doctor_id": doctor.id,
            "scheduled_date": "2026-02-20T12:00:00Z",
            "type": "Consulta",
            "notes": SECRET_NOTE,
        },
        headers=auth_headers(receptionist),
    )
    assert response.status_code == 201
    assert SECRET_NOTE not in response.text


def test_clinician_write_responses_keep_notes(client, doctor, patient, make_appointment):
    appointment = make_appointment(doctor, patient, utc(2026, 2, 20, 13, 0), notes=SECRET_NOTE)
    response = client.post(f"{API}/appointments/{appointment.id}/confirm", headers=auth_headers(doctor))
    assert response.status_code == 200
    assert response.json()["notes"] == SECRET_NOTE
