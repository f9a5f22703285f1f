"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Startup errors (configuration resolution)
    • Data-access errors (cache, repository)
    • Payment gateway verification errors
    • Consistent JSON error response format

Usage:
    from schoolhub.core.errors import (
        SchoolHubError,
        ConfigError,
        ConfigErrorKind,
        CacheError,
        NotFoundError,
        GatewayVerificationError,
        register_error_handlers,
    )

    raise NotFoundError("School", domain="school.example.com")
"""

from __future__ import annotations

import logging
import traceback
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class SchoolHubError(Exception):
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


# ── Configuration ──

class ConfigErrorKind(str, Enum):
    SOURCE_UNREADABLE = "source_unreadable"
    OVERLAY_UNREADABLE = "overlay_unreadable"
    PARSE_ERROR = "parse_error"


class ConfigError(SchoolHubError):
    """Configuration could not be resolved. Always fatal at startup."""

    def __init__(self, kind: ConfigErrorKind, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=500,
            error_code=f"CONFIG_{kind.name}",
            details={"kind": kind.value, **details},
        )
        self.kind = kind


# ── Cache ──

class CacheErrorKind(str, Enum):
    UNAVAILABLE = "unavailable"


class CacheError(SchoolHubError):
    """Cache backend failed. Never fatal to a read that can fall back."""

    def __init__(
        self,
        message: str = "Cache unavailable",
        *,
        kind: CacheErrorKind = CacheErrorKind.UNAVAILABLE,
        **details: Any,
    ):
        super().__init__(
            message=message,
            status_code=503,
            error_code="CACHE_UNAVAILABLE",
            details={"kind": kind.value, **details},
        )
        self.kind = kind


# ── Repository ──

class RepositoryError(SchoolHubError):
    """Base class for persistence failures."""


class NotFoundError(RepositoryError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class RepositoryUnavailableError(RepositoryError):
    """Backing store unreachable or failed mid-operation (503)."""

    def __init__(self, operation: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Repository operation '{operation}' failed: {message}",
            status_code=503,
            error_code="REPOSITORY_UNAVAILABLE",
            details={"operation": operation, **details},
        )


class ValidationError(RepositoryError):
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


# ── Payment gateway ──

class GatewayVerificationError(SchoolHubError):
    """Gateway rejected the test transaction; credentials were not saved (502)."""

    def __init__(self, gateway: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Payment gateway '{gateway}' verification failed: {message}",
            status_code=502,
            error_code="GATEWAY_VERIFICATION_FAILED",
            details={"gateway": gateway, **details},
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
    include_request: bool = True,
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

    if request and include_request:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI, *, production: bool = False) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(SchoolHubError)
    async def handle_schoolhub_error(request: Request, exc: SchoolHubError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request, include_request=not production,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        # Malformed bodies, unknown patch fields and explicit nulls land here
        fields = [
            {
                "loc": ".".join(str(p) for p in err["loc"] if p != "body"),
                "msg": err["msg"],
            }
            for err in exc.errors()
        ]
        logger.warning("Request validation failed: %s", fields)
        return _build_error_response(
            422, "VALIDATION_ERROR", "Request body failed validation",
            {"fields": fields}, request, include_request=not production,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = "Internal server error" if production else str(exc)
        return _build_error_response(
            500, "INTERNAL_ERROR", message, None, request,
            include_request=not production,
        )
