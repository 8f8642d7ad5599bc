"""Store domain errors and their HTTP rendering."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from libs.common.logging import get_logger

logger = get_logger(__name__)


class StoreError(Exception):
    """Base exception for store domain failures."""

    status_code = 400
    code = "store_error"

    def __init__(self, detail: str, **context):
        self.detail = detail
        self.context = context
        super().__init__(detail)


class InvalidRequest(StoreError):
    status_code = 400
    code = "invalid_request"


class NotFound(StoreError):
    status_code = 404
    code = "not_found"


class OutOfStock(StoreError):
    status_code = 409
    code = "out_of_stock"


class InvalidTransition(StoreError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, detail: str, current_status=None, event=None, **context):
        self.current_status = current_status
        self.event = event
        super().__init__(detail, **context)


class InvalidPairing(StoreError):
    status_code = 409
    code = "invalid_pairing"


class DuplicateEvent(StoreError):
    """A webhook event that was already handled; informational only."""

    status_code = 200
    code = "duplicate_event"


class SignatureVerificationFailed(StoreError):
    status_code = 401
    code = "signature_verification_failed"


class ConcurrencyConflict(StoreError):
    """Transient contention; the operation may be retried."""

    status_code = 503
    code = "concurrency_conflict"


class GatewayError(StoreError):
    """Payment gateway API failure."""

    status_code = 502
    code = "gateway_error"

    def __init__(
        self, detail: str, status_code: int = None, response_data: dict = None
    ):
        self.gateway_status_code = status_code
        self.response_data = response_data or {}
        super().__init__(detail)


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Store error: %s",
        exc.detail,
        extra={"extra_fields": {"code": exc.code, "status_code": exc.status_code}},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


def add_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StoreError, store_error_handler)
