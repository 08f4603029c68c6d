# backoffice/redaction.py
"""Front-desk views of clinical payloads.

Deny-list transforms applied as the last step before a response leaves the
process. They never mutate their input.
"""
from typing import Any, Callable, Dict, TypeVar

from .models import UserRole

T = TypeVar("T")

NOTE_KEYS = ("notes", "operational_notes")
ROW_CLINICAL_KEYS = ("notes", "medical_record")


def _without(value: Any, keys) -> Any:
    if not isinstance(value, dict):
        return value
    return {k: v for k, v in value.items() if k not in keys}


def redact_day_dashboard(payload: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        return payload
    rows = payload.get("rows")
    if isinstance(rows, list):
        rows = [_without(row, ROW_CLINICAL_KEYS) for row in rows]
    return {**payload, "rows": rows}


def redact_appointment_detail(payload: Dict[str, Any]) -> Dict[str, Any]:
    return _without(payload, NOTE_KEYS + ("medical_record",))


def redact_patient_detail(payload: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        return payload
    redacted = _without(payload, ("medical_records",))
    appointments = redacted.get("appointments")
    if isinstance(appointments, list):
        redacted["appointments"] = [_without(item, NOTE_KEYS) for item in appointments]
    return redacted


def redact_patient_history(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Each timeline entry keeps a ``medical_record`` key, set to None."""
    if not isinstance(payload, dict):
        return payload
    timeline = payload.get("timeline")
    if isinstance(timeline, list):
        timeline = [
            {**_without(entry, ROW_CLINICAL_KEYS), "medical_record": None} if isinstance(entry, dict) else entry
            for entry in timeline
        ]
    return {**payload, "timeline": timeline}


def maybe_redact_for_receptionist(role, payload: T, redactor: Callable[[T], T]) -> T:
    if role != UserRole.RECEPTIONIST:
        return payload
    return redactor(payload)
