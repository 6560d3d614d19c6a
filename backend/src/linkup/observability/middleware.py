"""Request correlation and timing middleware."""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from . import metrics
from .logging_config import bind_request_id, get_logger, new_request_id, request_id_var

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _route_template(request: Request) -> str:
    # Route templates keep metric labels bounded (/weights/{version}/promote)
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the logging context, echoes it back and times the request.

    An incoming ``X-Request-ID`` is reused so callers can correlate their
    own logs with ours.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        token = bind_request_id(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.error(f"{request.method} {request.url.path} raised", exc_info=True)
            request_id_var.reset(token)
            raise

        elapsed = time.perf_counter() - started
        metrics.http_request_duration_seconds.labels(
            method=request.method,
            route=_route_template(request),
            status_code=str(response.status_code),
        ).observe(elapsed)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={"status_code": response.status_code, "duration_ms": round(elapsed * 1000, 2)},
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        request_id_var.reset(token)
        return response
