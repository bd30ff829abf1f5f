"""
FastAPI Middleware for the Blocklist Screening API

Provides CORS configuration, request logging, and global error handling.
"""

import os
import time
import uuid
import logging
from datetime import datetime, timezone
from typing import Callable, List

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from database.repositories import (
    DuplicateEntityError,
    EntityNotFoundError,
    InvalidStatusTransition,
    RepositoryError,
)
from screener import InputValidationError
from search_index import SearchBackendError
from xml_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

# Default allowed origins for localhost development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8000",
]

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


def get_allowed_origins() -> List[str]:
    """Allowed origins from CORS_ORIGINS (comma-separated) or the localhost defaults"""
    cors_origins_env = os.getenv("CORS_ORIGINS", "")
    if cors_origins_env:
        return [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
    return DEFAULT_CORS_ORIGINS


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware for the application."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Processing-Time-MS"],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with a request id and its processing time."""

    async def dispatch(self, request: Request, call_next: Callable):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id

        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitize_for_logging(request.url.path),
            request_id,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Request failed: error=%s elapsed_ms=%d request_id=%s",
                type(exc).__name__,
                _elapsed_ms(start),
                request_id,
            )
            raise

        elapsed = _elapsed_ms(start)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-MS"] = str(elapsed)
        logger.info(
            "Response: status=%d elapsed_ms=%d request_id=%s",
            response.status_code,
            elapsed,
            request_id,
        )
        return response


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    suggestion: str = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion

    return JSONResponse(status_code=status_code, content={"error": error_detail})


def _log_exception(request: Request, exc: Exception, level: int = logging.ERROR) -> None:
    logger.log(
        level,
        "Exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        getattr(request.state, "request_id", "unknown"),
    )


# Caller-facing conflicts and lookups: (status, code), message passed through
_CLIENT_ERRORS = (
    (DuplicateEntityError, 409, "CONFLICT"),
    (EntityNotFoundError, 404, "NOT_FOUND"),
    (InvalidStatusTransition, 409, "INVALID_STATE"),
)

# Server-side failures: (status, code, message); internal text is never returned
_SERVER_ERRORS = (
    (ConfigurationError, 503, "CONFIGURATION_ERROR",
     "Service configuration is invalid. Please contact administrator."),
    (SearchBackendError, 500, "SEARCH_UNAVAILABLE", GENERIC_ERROR_MESSAGE),
)


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map service-layer exceptions to standardized error responses."""
    if isinstance(exc, InputValidationError):
        _log_exception(request, exc, logging.WARNING)
        return create_error_response(
            code=exc.code,
            message=str(exc),
            status_code=422,
            field=exc.field,
            suggestion=exc.suggestion,
        )

    for exc_class, status_code, code in _CLIENT_ERRORS:
        if isinstance(exc, exc_class):
            _log_exception(request, exc, logging.WARNING)
            return create_error_response(code=code, message=str(exc), status_code=status_code)

    _log_exception(request, exc)
    for exc_class, status_code, code, message in _SERVER_ERRORS:
        if isinstance(exc, exc_class):
            return create_error_response(code=code, message=message, status_code=status_code)

    return create_error_response(
        code="INTERNAL_ERROR",
        message=GENERIC_ERROR_MESSAGE,
        status_code=500,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.
    """
    _log_exception(request, exc)
    return create_error_response(
        code="INTERNAL_ERROR",
        message=GENERIC_ERROR_MESSAGE,
        status_code=500,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )

    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for request body/parameter validation failures."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part != "body"]
    logger.warning(
        "Request validation failed: %s request_id=%s",
        sanitize_for_logging(str(first.get("msg", ""))),
        getattr(request.state, "request_id", "unknown"),
    )
    return create_error_response(
        code="VALIDATION_ERROR",
        message=first.get("msg", "Invalid request"),
        status_code=422,
        field=".".join(location) or None,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    for exc_class in (InputValidationError, RepositoryError, ConfigurationError, SearchBackendError):
        app.add_exception_handler(exc_class, domain_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
