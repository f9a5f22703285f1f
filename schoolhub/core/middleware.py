"""
Request middleware — correlation id, tenant tagging, access log.

For every request:
    • request id taken from X-Request-ID, or generated
    • tenant alias it addressed: X-School-Domain header, else the Host name
    • both bound as log context for everything logged while it is handled
    • one access-log line with status, timing and the X-Cache outcome
    • X-Request-ID / X-Process-Time set on the response
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from schoolhub.core.logging_config import bind_request_context, clear_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SCHOOL_DOMAIN_HEADER = "X-School-Domain"

_UNLOGGED_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon")


def tenant_domain(request: Request) -> str:
    """The school alias a request is addressed to, lowercased, without port."""
    explicit = request.headers.get(SCHOOL_DOMAIN_HEADER, "").strip()
    if explicit:
        return explicit.lower()
    return request.headers.get("host", "").split(":", 1)[0].strip().lower()


class RequestContextMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        path = request.url.path

        bind_request_context(
            request_id=request_id,
            client_ip=request.client.host if request.client else "unknown",
            method=request.method,
            endpoint=path,
            domain=tenant_domain(request),
        )
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s failed after %.1fms",
                request.method, path, (time.perf_counter() - start) * 1000,
                extra={"status_code": 500},
            )
            clear_request_context()
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_UNLOGGED_PREFIXES):
            cache = response.headers.get("X-Cache")
            logger.log(
                logging.WARNING if response.status_code >= 400 else logging.INFO,
                "%s %s -> %d (%.1fms%s)",
                request.method, path, response.status_code, duration_ms,
                f", cache {cache}" if cache else "",
                extra={
                    "duration_ms": round(duration_ms, 1),
                    "status_code": response.status_code,
                    "cache": cache.lower() if cache else None,
                },
            )

        clear_request_context()
        return response
