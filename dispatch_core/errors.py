"""
DISPATCH-CORE — Error taxonomy

Every command either succeeds or raises one of these. Nothing here is retried
by the engines; only StoreUnavailable is marked safe for a caller retry.
"""
from typing import Any, Dict, Optional


class DispatchError(Exception):
    """Base class for every rejection surfaced by the core."""

    kind = "DispatchError"
    status_code = 400
    retryable = False
    default_message = "The request could not be completed."

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "ok": False,
            "error": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(DispatchError):
    kind = "ValidationError"
    status_code = 400
    default_message = "Some fields are missing or invalid."

    def __init__(self, message: Optional[str] = None, fields: Optional[Dict[str, str]] = None, **details):
        super().__init__(message, **details)
        self.fields = dict(fields or {})

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["fields"] = self.fields
        return payload


class NotFound(DispatchError):
    kind = "NotFound"
    status_code = 404
    default_message = "That record no longer exists."


class InvalidTransition(DispatchError):
    kind = "InvalidTransition"
    status_code = 409
    default_message = "That status change is not allowed from the current status."


class VehicleUnavailable(DispatchError):
    kind = "VehicleUnavailable"
    status_code = 409
    default_message = "Someone else already dispatched that vehicle, pick another."


class OccurrenceClosed(DispatchError):
    kind = "OccurrenceClosed"
    status_code = 409
    default_message = "This occurrence is already closed."


class AlreadyCrewing(DispatchError):
    kind = "AlreadyCrewing"
    status_code = 409
    default_message = "You are already on a vehicle. Leave it before joining another."


class NotCrewing(DispatchError):
    kind = "NotCrewing"
    status_code = 409
    default_message = "You are not on any vehicle."


class Unauthorized(DispatchError):
    kind = "Unauthorized"
    status_code = 403
    default_message = "You do not have permission to do that."


class StoreUnavailable(DispatchError):
    kind = "StoreUnavailable"
    status_code = 503
    retryable = True
    default_message = "The dispatch database is temporarily unavailable. Try again."


ERROR_CLASSES = {
    cls.kind: cls
    for cls in (
        ValidationError, NotFound, InvalidTransition, VehicleUnavailable,
        OccurrenceClosed, AlreadyCrewing, NotCrewing, Unauthorized, StoreUnavailable,
    )
}
