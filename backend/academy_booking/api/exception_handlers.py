"""
Maps booking errors to HTTP responses of the form
{"error": {"kind": ..., "message": ..., **details}}.
"""

from typing import Any, Callable, Coroutine

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from academy_booking.core.exceptions import BookingError, SignatureError
from academy_booking.core.locks import LockTimeout
from academy_booking.core.logging import get_logger

logger = get_logger(__name__)

ExceptionHandler = Callable[[Request, Exception], Coroutine[Any, Any, Response]]


async def booking_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = exc if isinstance(exc, BookingError) else BookingError(str(exc))

    if isinstance(error, SignatureError):
        logger.warning("signature_rejected", path=request.url.path, **error.details)
    elif error.status_code >= 500:
        logger.error("booking_error", kind=error.kind, error=error.message, **error.details)
    else:
        logger.warning("booking_error", kind=error.kind, error=error.message)

    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()}, headers=_headers(error))


async def lock_timeout_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("lock_timeout", error=str(exc))
    return JSONResponse(
        status_code=409,
        content={"error": {"kind": "busy", "message": "Resource is busy. Please try again."}},
        headers={"Retry-After": "1"},
    )


def _headers(error: BookingError) -> dict:
    if error.status_code == 409:
        return {"Retry-After": "1"}
    return {}


EXCEPTION_HANDLERS: dict[type[Exception], ExceptionHandler] = {
    BookingError: booking_error_handler,
    LockTimeout: lock_timeout_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
