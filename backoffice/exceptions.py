# backoffice/exceptions.py
from datetime import datetime
from typing import Any, Dict, Optional


class BackofficeError(Exception):
    """Base class for every error the back-office core raises on purpose."""

    code = "BACKOFFICE_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = detail

    def to_dict(self) -> Dict[str, Any]:
        detail = {}
        for key, value in self.detail.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif hasattr(value, "value"):
                value = value.value
            detail[key] = value
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "detail": detail,
        }


class InvalidInputError(BackofficeError):
    """Malformed input, raised before any side effect."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(BackofficeError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class ForbiddenError(BackofficeError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "You do not have permission to access this resource.", **detail: Any):
        super().__init__(message, **detail)


class ConflictError(BackofficeError):
    """The caller may try again, possibly with different input."""
    code = "CONFLICT"
    status_code = 409
    retryable = True


class SchedulingConflictError(ConflictError):
    code = "SCHEDULING_CONFLICT"

    def __init__(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        conflicting_appointment_id: Optional[int] = None,
        conflicting_start: Optional[datetime] = None,
        conflicting_end: Optional[datetime] = None,
    ):
        super().__init__(
            "The clinician already has an appointment in this time window.",
            doctor_id=doctor_id,
            requested_start=start,
            requested_end=end,
            conflicting_appointment_id=conflicting_appointment_id,
            conflicting_start=conflicting_start,
            conflicting_end=conflicting_end,
        )


class SerializationConflictError(SchedulingConflictError):
    """A concurrent booking won the race; storage aborted this transaction."""
    code = "SCHEDULING_CONFLICT"

    def __init__(self, doctor_id: int, start: datetime, end: datetime):
        super().__init__(doctor_id, start, end)
        self.detail["reason"] = "concurrent_booking"


class PreconditionError(BackofficeError):
    code = "PRECONDITION_FAILED"
    status_code = 422


class InvalidTransitionError(PreconditionError):
    code = "INVALID_TRANSITION"

    def __init__(self, entity: str, from_status: Any, to_status: Any):
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(
            f"{entity} cannot move from {from_value} to {to_value}",
            entity=entity,
            from_status=from_value,
            to_status=to_value,
        )
        self.from_status = from_status
        self.to_status = to_status


class PaymentStateError(PreconditionError):
    code = "PAYMENT_STATE"

    def __init__(self, action: str, current_status: Any, required_status: Any):
        current = getattr(current_status, "value", current_status)
        required = getattr(required_status, "value", required_status)
        super().__init__(
            f"Cannot {action} a payment in status {current}; it must be {required}",
            action=action,
            current_status=current,
            required_status=required,
        )
