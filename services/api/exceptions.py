"""
Custom exception handlers and error responses
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import traceback
from typing import Any, Dict, Optional
from datetime import datetime, timezone

from services.hal.exceptions import CommandRejectedError, DriverConnectionError

logger = logging.getLogger(__name__)


class IVDServiceException(Exception):
    """Base exception for the instrument service API"""
    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class DriverNotFoundException(IVDServiceException):
    """Unknown driver key"""
    def __init__(self, driver_name: str, available: list):
        super().__init__(
            message=f"Driver '{driver_name}' not registered",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="DRIVER_NOT_FOUND",
            details={"driver_name": driver_name, "available": available}
        )


class InstrumentConnectionException(IVDServiceException):
    """Driver handshake failed or timed out"""
    def __init__(self, message: str, driver_id: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="INSTRUMENT_UNAVAILABLE",
            details={"driver_id": driver_id} if driver_id else {}
        )


class CommandRejectedException(IVDServiceException):
    """Driver refused a command"""
    def __init__(self, command: str, driver_id: Optional[str] = None):
        super().__init__(
            message=f"Command '{command}' rejected",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="COMMAND_REJECTED",
            details={"command": command, "driver_id": driver_id}
        )


class MonitorNotReadyException(IVDServiceException):
    """No snapshot has been polled yet"""
    def __init__(self):
        super().__init__(
            message="Instrument monitor has not produced a snapshot yet",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="MONITOR_NOT_READY"
        )


def _error_body(code: str, message: str, request_id: str, details: Optional[Dict[str, Any]] = None):
    body = {
        "code": code,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    if details is not None:
        body["details"] = details
    return {"error": body}


async def ivd_exception_handler(request: Request, exc: IVDServiceException):
    """Handle service-specific exceptions"""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        f"{exc.error_code}: {exc.message}",
        extra={
            "request_id": request_id,
            "status_code": exc.status_code,
            "error_code": exc.error_code,
            "details": exc.details
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.error_code, exc.message, request_id, exc.details)
    )


async def driver_connection_handler(request: Request, exc: DriverConnectionError):
    """Map driver handshake failures to 503"""
    return await ivd_exception_handler(
        request, InstrumentConnectionException(str(exc), exc.driver_id)
    )


async def command_rejected_handler(request: Request, exc: CommandRejectedError):
    """Map refused commands to 400"""
    return await ivd_exception_handler(
        request, CommandRejectedException(exc.command, exc.driver_id)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors"""
    request_id = getattr(request.state, "request_id", "unknown")

    errors = []
    for error in exc.errors():
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field_path,
            "message": error["msg"],
            "type": error["type"]
        })

    logger.warning(
        f"Validation error: {len(errors)} field(s) failed validation",
        extra={
            "request_id": request_id,
            "errors": errors
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body("VALIDATION_ERROR", "Request validation failed", request_id, {"errors": errors})
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle standard HTTP exceptions"""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        f"HTTP {exc.status_code}: {exc.detail}",
        extra={
            "request_id": request_id,
            "status_code": exc.status_code
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(f"HTTP_{exc.status_code}", exc.detail, request_id)
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        f"Unexpected error: {str(exc)}",
        extra={"request_id": request_id},
        exc_info=True
    )

    from services.api.config import settings

    # Sanitize error message for production
    if settings.environment == "production":
        message = "An internal error occurred. Please try again later."
        details = {"request_id": request_id}
    else:
        message = f"{exc.__class__.__name__}: {str(exc)}"
        details = {
            "request_id": request_id,
            "exception": exc.__class__.__name__,
            "traceback": traceback.format_exc().split('\n')[-5:] if settings.debug else None
        }

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("INTERNAL_ERROR", message, request_id, details)
    )


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app"""
    app.add_exception_handler(IVDServiceException, ivd_exception_handler)
    app.add_exception_handler(DriverConnectionError, driver_connection_handler)
    app.add_exception_handler(CommandRejectedError, command_rejected_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
