"""
Request middleware — correlation IDs, timing and the operator audit trail.

Every request runs inside a log context carrying request_id, client_ip,
method and endpoint, plus the hazard kind when the path names one, so
cycle logs triggered from /operator/cycles/{kind} are tagged the same way
as scheduled ones.

Operator routes additionally write one line to the ``hazardwatch.audit``
logger whatever the outcome, including rejected tokens.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from hazardwatch.core.logging_config import log_context

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("hazardwatch.audit")

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")
_OPERATOR_PREFIX = "/api/v1/operator"
_HAZARD_IN_PATH = re.compile(r"/(?:hazards|cycles)/(earthquake|storm|flood)(?:/|$)")


def hazard_from_path(path: str) -> Optional[str]:
    m = _HAZARD_IN_PATH.search(path)
    return m.group(1) if m else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag logs with a correlation ID, time the request, audit operator calls."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        context = {
            "request_id": request_id,
            "client_ip": client_ip,
            "endpoint": path,
            "method": request.method,
        }
        hazard = hazard_from_path(path)
        if hazard:
            context["hazard"] = hazard

        with log_context(**context):
            start = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.error(
                    "%s %s → 500 (%.1fms) [%s]",
                    request.method, path, duration_ms, client_ip,
                    extra={"duration_ms": duration_ms, "status_code": 500},
                )
                self._audit(request, 500)
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

            if not path.startswith(_QUIET_PREFIXES):
                level = logging.WARNING if response.status_code >= 400 else logging.INFO
                logger.log(
                    level,
                    "%s %s → %d (%.1fms) [%s]",
                    request.method, path, response.status_code,
                    duration_ms, client_ip,
                    extra={"duration_ms": duration_ms, "status_code": response.status_code},
                )
            self._audit(request, response.status_code)
        return response

    @staticmethod
    def _audit(request: Request, status_code: int) -> None:
        if not request.url.path.startswith(_OPERATOR_PREFIX):
            return
        audit_logger.info(
            "operator %s %s → %d (token %s)",
            request.method, request.url.path, status_code,
            "presented" if request.headers.get("X-Operator-Token") else "absent",
            extra={"status_code": status_code},
        )
