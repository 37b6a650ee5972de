"""
Data Services — Request Context Middleware
============================================

What:  Gives every request an id and writes one access line per request,
       naming the service method the generated route dispatched to.
How:   1. The id comes from the client's `X-Request-ID` or is generated
          (8 hex chars). It lives in `request_id_var` for the duration of the
          request, so error payloads built anywhere can carry it.
       2. The Router Builder's endpoint records its binding on
          `request.state.service_method` ("InsertData.fetch_insert_data").
          Requests that never reach a generated route (docs, 404, 405) log
          "-" instead.
       3. The id is echoed in the `X-Request-ID` response header.
Who:   Installed on every ApiServer application, outermost.

Access line:
    GET /data?page=2 → InsertData.fetch_insert_data 200 4.2ms [a1b2c3d4] from 127.0.0.1

Level by status: 5xx → ERROR, 4xx → WARNING, else INFO.
Bodies and headers are never logged.
"""

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# Coroutine-local: concurrent requests on one loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

access_logger = logging.getLogger("data_services.access")


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request id assignment and the access log, for every request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        request_id_var.set(rid)
        request.state.request_id = rid
        start_time = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        target = getattr(request.state, "service_method", None) or "-"
        # request.client is None under some test transports
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"

        access_logger.log(
            _level_for(response.status_code),
            "%s %s → %s %d %.1fms [%s] from %s",
            request.method,
            path,
            target,
            response.status_code,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "service_method": target,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        response.headers[REQUEST_ID_HEADER] = rid
        return response
