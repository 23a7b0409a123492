"""
Service error taxonomy.

Every error is an HTTPException carrying a stable machine-readable code, so
service functions raise them directly and the API renders them through
``service_error_handler`` as::

    {"error": {"code": "...", "message": "...", "status": 409, "details": {...}}}
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ServiceError(HTTPException):
    """Base class for typed, client-actionable failures."""

    status: int = 400
    code: str = "SERVICE_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(status_code=self.status, detail=message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    """Bad input shape or range; the caller can fix and retry."""

    status = 422
    code = "VALIDATION_ERROR"


class AuthenticationRequired(ServiceError):
    status = 401
    code = "AUTHENTICATION_REQUIRED"

    def __init__(self, message: str = "Authentication required", **details: Any):
        super().__init__(message, **details)
        self.headers = {"WWW-Authenticate": "Bearer"}


class AccessDenied(ServiceError):
    """The actor is not a party to the request (or lacks the role)."""

    status = 403
    code = "ACCESS_DENIED"


class NotFound(ServiceError):
    status = 404
    code = "NOT_FOUND"


class IllegalTransition(ServiceError):
    """Transition not permitted from the current status for this role."""

    status = 409
    code = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        current: str,
        attempted: str,
        allowed: list[str],
        message: str | None = None,
    ):
        super().__init__(
            message
            or f"Cannot transition from '{current}' to '{attempted}'. Allowed: {allowed}",
            current_status=current,
            attempted_status=attempted,
            allowed=allowed,
        )


class UploadNotAllowed(IllegalTransition):
    """Documents may only be attached while the job is accepted or in progress."""

    code = "UPLOAD_NOT_ALLOWED"

    def __init__(self, current: str, uploadable: list[str]):
        ServiceError.__init__(
            self,
            f"Documents cannot be uploaded while the request is '{current}'. "
            f"Allowed while: {uploadable}",
            current_status=current,
            uploadable_statuses=uploadable,
        )


class ClaimError(ServiceError):
    status = 409
    code = "CLAIM_FAILED"


class AlreadyClaimed(ClaimError):
    code = "ALREADY_CLAIMED"


class PaymentNotSucceeded(ClaimError):
    code = "PAYMENT_NOT_SUCCEEDED"


class Expired(ServiceError):
    """A document past its TTL."""

    status = 410
    code = "DOCUMENT_EXPIRED"


class UpstreamUnavailable(ServiceError):
    """Geocoder, blob store or gateway infrastructure is down."""

    status = 503
    code = "UPSTREAM_UNAVAILABLE"


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI's own body/query validation failures in the same envelope."""
    err = ValidationError("Request validation failed", errors=jsonable_encoder(exc.errors()))
    return JSONResponse(status_code=err.status_code, content={"error": err.to_dict()})


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.to_dict()},
        headers=getattr(exc, "headers", None),
    )
