"""Per-request latency logging."""

import logging
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

SLOW_REQUEST_THRESHOLD_MS = 1000
VERY_SLOW_REQUEST_THRESHOLD_MS = 3000

# Order placement waits through fixed phase delays, so its latency is expected.
PHASED_PATHS = ("/api/v1/checkout/place-order",)

HEALTH_PATHS = ("/health", "/health/ready")


def _level_for(path: str, status_code: int, latency_ms: float) -> tuple[int, str]:
    """Pick the log level and message prefix for a finished request."""
    if path in HEALTH_PATHS:
        return logging.DEBUG, ""
    if status_code >= 500:
        return logging.ERROR, ""
    if path not in PHASED_PATHS:
        if latency_ms > VERY_SLOW_REQUEST_THRESHOLD_MS:
            return logging.ERROR, "VERY SLOW REQUEST: "
        if latency_ms > SLOW_REQUEST_THRESHOLD_MS:
            return logging.WARNING, "SLOW REQUEST: "
    if status_code >= 400:
        return logging.WARNING, ""
    return logging.INFO, ""


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, path, status and latency of each request.

    Requests that raise are logged as 500 before the exception propagates.
    """
    start_time = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000
        level, prefix = _level_for(request.url.path, status_code, latency_ms)
        logger.log(
            level,
            "%s%s %s - %s - %.2fms",
            prefix,
            request.method,
            request.url.path,
            status_code,
            latency_ms,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "latency_ms": round(latency_ms, 2),
                "request_id": request.headers.get("X-Request-ID"),
            },
        )
