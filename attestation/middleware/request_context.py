"""Request context middleware: a request id and a summary line per request.

The id comes from the caller's X-Request-ID header or is generated, lives
in a ContextVar for the duration of the request, is stamped onto every log
record by a root-logger filter, and is echoed back in the response header.
A create that fails deep inside a connector can then be traced to the
HTTP request that triggered it.

When the matched route carries an attestation id, the summary line gets it
as ``attestation_id`` too, so one filter finds every request that touched
a given attestation.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class _RequestContextFilter(logging.Filter):
    """Adds ``request_id`` to every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


def _summary_fields(
    request: Request, req_id: str, status_code: int, duration_ms: float
) -> dict[str, object]:
    fields: dict[str, object] = {
        "request_id": req_id,
        "method": request.method,
        "path": request.url.path,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    # path_params is filled in by the router once a route matched
    attestation_id = request.scope.get("path_params", {}).get("attestation_id")
    if attestation_id:
        fields["attestation_id"] = attestation_id
    return fields


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request_id_var.set(req_id)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra=_summary_fields(request, req_id, response.status_code, duration_ms),
        )

        response.headers[REQUEST_ID_HEADER] = req_id
        return response
