"""Domain errors raised by the allocator and the state machine.

Every error is an ``HTTPException`` so services can raise it directly, the
same way the routers do. The payload is always
``{"errorCode", "message", "details"}``; ``details`` carries enough context
(agency, year, trámite id, attempted state) to diagnose and retry.
"""
from typing import Any, Optional

from fastapi import HTTPException, status


class TramiteError(HTTPException):
    """Base class for all domain errors."""

    error_code = "TRAMITE_ERROR"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, status_code: Optional[int] = None):
        self.message = message
        self.details = details or {}
        super().__init__(
            status_code=status_code or self.status_code_default,
            detail={"errorCode": self.error_code, "message": message, "details": self.details},
        )


class AllocationFailed(TramiteError):
    """Retries exhausted while reserving a consecutivo. Safe to retry later."""

    error_code = "CONSECUTIVO_ERROR"
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, agency_id: str, year: int, attempts: int):
        super().__init__(
            "Could not allocate a consecutivo.",
            {"agency_id": agency_id, "year": year, "attempts": attempts},
        )


class CaseLocked(TramiteError):
    error_code = "TRAMITE_LOCKED"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, tramite_id: str, current_state: str, attempted_state: Optional[str] = None):
        details = {"tramite_id": tramite_id, "current_state": current_state}
        if attempted_state is not None:
            details["attempted_state"] = attempted_state
        super().__init__("The trámite is finalized or cancelled and cannot be modified.", details)


class MissingRequiredField(TramiteError):
    error_code = "REQUIRED_FIELD_FOR_STATE"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, tramite_id: str, field: str, attempted_state: str):
        super().__init__(
            f"'{field}' is required for state {attempted_state}.",
            {"tramite_id": tramite_id, "field": field, "attempted_state": attempted_state},
        )


class AlreadyFinalized(TramiteError):
    error_code = "ALREADY_FINALIZED"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, tramite_id: str):
        super().__init__("The trámite is already finalized.", {"tramite_id": tramite_id})


class AlreadyCancelled(TramiteError):
    error_code = "ALREADY_CANCELLED"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, tramite_id: str):
        super().__init__("The trámite is already cancelled.", {"tramite_id": tramite_id})


class NotFinalized(TramiteError):
    error_code = "NOT_FINALIZED"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, tramite_id: str, current_state: str):
        super().__init__(
            "Only a finalized trámite can be reopened.",
            {"tramite_id": tramite_id, "current_state": current_state},
        )


class NotFound(TramiteError):
    error_code = "NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found.", {"entity": entity, "id": str(entity_id)})


class InvalidState(TramiteError):
    error_code = "INVALID_STATE"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, attempted_state: Any, reason: str = "Unknown state."):
        super().__init__(reason, {"attempted_state": str(attempted_state)})


class ValidationFailed(TramiteError):
    error_code = "VALIDATION_ERROR"
    status_code_default = status.HTTP_400_BAD_REQUEST


class Conflict(TramiteError):
    """Uniqueness clash on a catalog entry (agency code, rule name, document key)."""

    error_code = "CONFLICT"
    status_code_default = status.HTTP_409_CONFLICT


class UploadTooLarge(TramiteError):
    error_code = "UPLOAD_TOO_LARGE"
    status_code_default = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE

    def __init__(self, size: int, limit: int):
        super().__init__("File too large.", {"size": size, "limit": limit})
