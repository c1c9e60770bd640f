"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes for the ingest/alert pipeline
    • Consistent JSON error response format
    • Automatic logging of unhandled errors

Error taxonomy of the pipeline:
    SourceError                 — one adapter failed; recovered locally
    MalformedRecordError        — record unusable after parsing; dropped
    DuplicateNotificationError  — dedup race; expected, silently ignored
    PersistenceError            — store unavailable; aborts one cycle

Usage:
    from hazardwatch.core.errors import NotFoundError, register_error_handlers

    raise NotFoundError("Notification", id="ntf-123")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hazardwatch.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class HazardWatchError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(HazardWatchError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(HazardWatchError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class OperatorAuthError(HazardWatchError):
    """Operator-only endpoint called without a valid token (403)."""

    def __init__(self, message: str = "Operator token required"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="OPERATOR_ONLY",
        )


class SourceError(HazardWatchError):
    """An upstream source could not be fetched or parsed (502)."""

    def __init__(self, source: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Source '{source}' failed: {message}",
            status_code=502,
            error_code="SOURCE_ERROR",
            details={"source": source, **details},
        )
        self.source = source


class MalformedRecordError(HazardWatchError):
    """A provisional record is missing a required field after parsing."""

    def __init__(self, source: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Malformed record from '{source}': {message}",
            status_code=422,
            error_code="MALFORMED_RECORD",
            details={"source": source, **details},
        )
        self.source = source


class DuplicateNotificationError(HazardWatchError):
    """A notification already exists for (subscriber, event) (409)."""

    def __init__(self, subscriber_id: str, identity_key: str):
        super().__init__(
            message=f"Notification exists for {subscriber_id} / {identity_key}",
            status_code=409,
            error_code="DUPLICATE_NOTIFICATION",
            details={"subscriber_id": subscriber_id, "identity_key": identity_key},
        )
        self.subscriber_id = subscriber_id
        self.identity_key = identity_key


class PersistenceError(HazardWatchError):
    """Durable store unavailable or write failed (503)."""

    def __init__(self, operation: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Store operation '{operation}' failed: {message}",
            status_code=503,
            error_code="PERSISTENCE_ERROR",
            details={"operation": operation, **details},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(HazardWatchError)
    async def handle_hazardwatch_error(request: Request, exc: HazardWatchError):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(
            level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        fields = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        logger.info("Rejected request to %s: %s", request.url.path, fields)
        return _build_error_response(
            422, "VALIDATION_ERROR", "Request validation failed",
            {"fields": fields}, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _build_error_response(
            500, "INTERNAL_ERROR", message, request=request,
        )
