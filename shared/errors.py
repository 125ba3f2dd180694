"""
Error taxonomy shared by the adapters, the orchestrator and the HTTP layers.

Every error carries a machine-readable ``code`` so callers and the UI shell
can branch on it without parsing English messages.
"""

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette import status


class NotesError(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class BackendUnavailable(NotesError):
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "backend_unavailable"


class Unauthorized(NotesError):
    http_status = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"


class NotFound(NotesError):
    http_status = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ConfigurationError(NotesError):
    http_status = status.HTTP_409_CONFLICT
    code = "configuration_error"


class ValidationError(NotesError):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"


class ConflictError(NotesError):
    http_status = status.HTTP_409_CONFLICT
    code = "conflict"


class BackendError(NotesError):
    """The backend rejected the request for a reason outside the taxonomy."""
    http_status = status.HTTP_502_BAD_GATEWAY
    code = "backend_error"


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        BackendUnavailable, Unauthorized, NotFound, ConfigurationError,
        ValidationError, ConflictError, BackendError,
    )
}


def error_from_payload(payload: Dict[str, Any]) -> NotesError:
    """Rebuild an error from its ``to_dict()`` form."""
    cls = ERRORS_BY_CODE.get(payload.get("code", ""), BackendError)
    return cls(payload.get("message") or "Unknown backend error", payload.get("details"))


async def notes_exception_handler(request: Request, exc: NotesError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )
