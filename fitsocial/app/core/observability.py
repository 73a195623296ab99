"""
Logging setup and request observability.

Every request carries a correlation id (taken from ``X-Correlation-ID`` or
generated) that is echoed back and attached to the request log record.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from fitsocial.app.core.config import settings

logger = logging.getLogger("fitsocial.http")

CORRELATION_HEADER = "X-Correlation-ID"


def configure_logging() -> None:
    """Root logger setup; modules log through logging.getLogger(__name__)."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}"

        logger.log(
            _level_for(response.status_code),
            "%s %s -> %d (%.1f ms)",
            request.method, request.url.path, response.status_code, elapsed_ms,
            extra={
                "correlation_id": correlation_id,
                "status_code": response.status_code,
                "duration_ms": round(elapsed_ms, 2),
                "client_ip": request.client.host if request.client else None,
            },
        )
        return response
