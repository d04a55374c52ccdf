# chapter_portal/middleware/error_handler.py
# Structured error handling middleware
# Maps the service error taxonomy to consistent JSON responses

import asyncio
import traceback
import logging
import uuid
from typing import Callable, Optional, Tuple
from fastapi import Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from chapter_portal.middleware.circuit_breaker import CircuitBreakerError
from chapter_portal.utils.logger import log_exception

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error with structured response."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: dict = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}


class BackingServiceError(AppError):
    """The spreadsheet or blob service failed or timed out."""
    def __init__(self, message: str = "Backing service unavailable", details: dict = None):
        super().__init__(
            message=message,
            error_code="BACKING_SERVICE_ERROR",
            status_code=503,
            details=details
        )


class ValidationError(AppError):
    """Request validation failed."""
    def __init__(self, message: str = "Validation failed", details: dict = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class NotFoundError(AppError):
    """Resource not found."""
    def __init__(self, message: str = "Resource not found", details: dict = None):
        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=404,
            details=details
        )


class ConflictError(AppError):
    """Precondition no longer holds after taking the lock and re-reading."""
    def __init__(self, message: str = "Conflict", details: dict = None):
        super().__init__(
            message=message,
            error_code="CONFLICT",
            status_code=409,
            details=details
        )


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Not authenticated"):
        super().__init__(
            message=message,
            error_code="UNAUTHORIZED",
            status_code=401,
        )


class ForbiddenError(AppError):
    def __init__(self, message: str = "Not allowed"):
        super().__init__(
            message=message,
            error_code="FORBIDDEN",
            status_code=403,
        )


class BusyError(AppError):
    """A named lock could not be acquired within the configured bound."""
    def __init__(self, resource: str, waited: float):
        super().__init__(
            message="Resource is busy. Please retry shortly.",
            error_code="RESOURCE_BUSY",
            status_code=503,
            details={"resource": resource, "waited_seconds": round(waited, 2)}
        )


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    details: dict = None,
    request_id: str = None
) -> JSONResponse:
    """Create a standardized JSON error response."""
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    if request_id:
        content["error"]["request_id"] = request_id

    return JSONResponse(status_code=status_code, content=content)


def describe_error(exc: Exception, debug: bool = False) -> Tuple[str, str, int, Optional[dict]]:
    """(code, message, status, details) for an exception reaching the HTTP layer."""
    if isinstance(exc, AppError):
        return exc.error_code, exc.message, exc.status_code, exc.details
    if isinstance(exc, HTTPException):
        return "HTTP_ERROR", str(exc.detail), exc.status_code, None
    if isinstance(exc, CircuitBreakerError):
        return (
            "BACKING_SERVICE_ERROR",
            "Backing service unavailable",
            503,
            {"retry_after_seconds": round(exc.recovery_time, 1)},
        )
    if isinstance(exc, asyncio.TimeoutError):
        return "BACKING_SERVICE_ERROR", "Backing service timed out", 503, None

    details = None
    if debug:
        details = {"type": type(exc).__name__, "traceback": traceback.format_exc()}
    return "INTERNAL_ERROR", "An internal error occurred. Please try again later.", 500, details


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Outermost guard: anything that escapes the routes becomes the JSON
    error envelope, and every response echoes an ``X-Request-ID``.
    """

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

        try:
            response = await call_next(request)
        except Exception as e:
            code, message, status_code, details = describe_error(e, self.debug)
            if status_code >= 500:
                log_exception(e, context=f"{request.method} {request.url.path}")
            logger.warning(
                f"{code} on {request.url.path}: {message}",
                extra={"request_id": request_id, "path": request.url.path}
            )
            response = create_error_response(code, message, status_code, details, request_id)

        response.headers["X-Request-ID"] = request_id
        return response


def setup_exception_handlers(app):
    """Register exception handlers on FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
        return create_error_response(
            error_code=exc.error_code,
            message=exc.message,
            status_code=exc.status_code,
            details=exc.details,
            request_id=request.headers.get("X-Request-ID"),
        )

    @app.exception_handler(CircuitBreakerError)
    async def circuit_open_handler(request: Request, exc: CircuitBreakerError):
        code, message, status_code, details = describe_error(exc)
        return create_error_response(code, message, status_code, details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return create_error_response(
            error_code="VALIDATION_ERROR",
            message="Malformed request",
            status_code=400,
            details={"errors": [
                {"loc": list(err.get("loc", [])), "msg": err.get("msg", "")}
                for err in exc.errors()
            ]}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        log_exception(exc, context=f"Unhandled error on {request.url.path}")
        return create_error_response(
            error_code="INTERNAL_ERROR",
            message="An internal error occurred",
            status_code=500
        )
