"""Request correlation and access logging for the HTTP services.

Every request is bound to a correlation id that shows up on each log line
emitted while handling it, and is echoed back in ``X-Request-ID``.
"""
import time
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

# Checked in order. Gateway deliveries carry their own transmission id, which
# lets a webhook log line be matched against the gateway's delivery console.
CORRELATION_HEADERS = ("x-request-id", "paypal-transmission-id")

QUIET_PATHS = frozenset({"/health"})


def correlation_id_from(request: Request) -> Optional[str]:
    for header in CORRELATION_HEADERS:
        value = request.headers.get(header)
        if value:
            return value[:128]
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds the correlation id and logs one line per finished request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=correlation_id_from(request),
            path=request.url.path,
            method=request.method,
        )
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(
                "Unhandled error while serving request",
                extra={"extra_fields": {
                    "error": str(exc),
                    "duration_ms": _elapsed_ms(started),
                }},
            )
            raise
        else:
            if request.url.path not in QUIET_PATHS:
                level = "warning" if response.status_code >= 500 else "info"
                getattr(logger, level)(
                    "%s %s -> %s",
                    request.method,
                    request.url.path,
                    response.status_code,
                    extra={"extra_fields": {
                        "status_code": response.status_code,
                        "duration_ms": _elapsed_ms(started),
                    }},
                )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_request_context()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def add_observability_middleware(app: FastAPI) -> None:
    """Configure logging and install the correlation middleware on ``app``."""
    configure_logging()
    app.add_middleware(RequestContextMiddleware)
