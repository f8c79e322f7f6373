"""
Custom exceptions and error handlers.
"""
import logging
from typing import Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from legalnexus.config import ConfigurationError, is_allowed_origin, is_public_path
from legalnexus.utils.logging import get_request_id

logger = logging.getLogger(__name__)


def _get_cors_origin(request: Request) -> Optional[str]:
    """Get CORS origin for an error response according to the path's policy."""
    origin = request.headers.get("origin")
    if not origin:
        return None

    if is_public_path(request.url.path):
        return "*"

    if is_allowed_origin(origin):
        return origin

    return None


def _add_cors_headers(response: JSONResponse, request: Request) -> JSONResponse:
    """Add CORS headers to error response."""
    origin = _get_cors_origin(request)
    if origin == "*":
        response.headers["Access-Control-Allow-Origin"] = "*"
    elif origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
    return response


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message)


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            status_code=404,
            code="NOT_FOUND",
            message=f"{resource} not found: {resource_id}",
        )


class ValidationException(AppException):
    """Validation error."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            status_code=400,
            code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class ConflictError(AppException):
    """Operation not allowed in the resource's current state."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            status_code=409,
            code="CONFLICT",
            message=message,
            details=details,
        )


class ExternalServiceError(AppException):
    """An upstream provider (messaging, model, storage) failed."""

    def __init__(self, service: str, message: str):
        super().__init__(
            status_code=502,
            code="EXTERNAL_SERVICE_ERROR",
            message=f"{service}: {message}",
            details={"service": service},
        )


# =============================================================================
# Domain errors (raised by services, mapped by routers/dispatcher)
# =============================================================================

class SigningStateError(Exception):
    """
    A signing request cannot be acted on in its current state.

    code is one of: not_found, expired, already_signed, cancelled.
    The public endpoints turn it into {success: false, error: code}.
    """

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_SIGNED = "already_signed"
    CANCELLED = "cancelled"

    HTTP_STATUS = {
        NOT_FOUND: 404,
        EXPIRED: 410,
        ALREADY_SIGNED: 409,
        CANCELLED: 409,
    }

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)

    @property
    def status_code(self) -> int:
        return self.HTTP_STATUS.get(self.code, 400)


class FieldBurnError(Exception):
    """The original document could not be loaded for burning."""


class StorageError(Exception):
    """Object storage operation failed."""


class StagedFileMissingError(StorageError):
    """Staged bytes for a pending selection are gone."""


class ExtractionError(Exception):
    """The extraction model call failed (network, quota, empty response)."""


class MediaDownloadError(Exception):
    """Downloading inbound media from the messaging provider failed."""


class DuplicateDocumentError(Exception):
    """A scanned document for this provider message id already exists."""

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Scanned document already exists for message {message_id}")


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Build standardized error response."""
    response = {
        "error": True,
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        response["details"] = details
    return response


async def app_exception_handler(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    """Handle application exceptions."""
    logger.warning(f"AppException: {exc.code} - {exc.message}")
    response = JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(
            exc.status_code,
            exc.code,
            exc.message,
            exc.details,
        ),
    )
    return _add_cors_headers(response, request)


async def http_exception_handler(
    request: Request,
    exc: HTTPException,
) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(f"HTTPException: {exc.status_code} - {exc.detail}")

    if isinstance(exc.detail, dict):
        code = exc.detail.get("code", "HTTP_ERROR")
        message = exc.detail.get("message", str(exc.detail))
    else:
        code = "HTTP_ERROR"
        message = str(exc.detail)

    response = JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(exc.status_code, code, message),
        headers=getattr(exc, "headers", None),
    )
    return _add_cors_headers(response, request)


async def validation_exception_handler(
    request: Request,
    exc: ValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"ValidationError: {exc.errors()}")

    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    response = JSONResponse(
        status_code=422,
        content=build_error_response(
            422,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": errors},
        ),
    )
    return _add_cors_headers(response, request)


async def configuration_exception_handler(
    request: Request,
    exc: ConfigurationError,
) -> JSONResponse:
    """Missing configuration is an operator error: report it, never hide it."""
    logger.error(f"ConfigurationError: {exc}")
    response = JSONResponse(
        status_code=500,
        content=build_error_response(500, "CONFIGURATION_ERROR", str(exc)),
    )
    return _add_cors_headers(response, request)


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")

    response = JSONResponse(
        status_code=500,
        content=build_error_response(
            500,
            "INTERNAL_ERROR",
            "An unexpected error occurred",
        ),
    )
    return _add_cors_headers(response, request)
