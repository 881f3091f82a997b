"""Booking error taxonomy and its translation into HTTP responses."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

logger = logging.getLogger(__name__)


class BookingError(Exception):
    """Base class for every error the booking core surfaces to its caller."""

    code = "booking_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class NotFound(BookingError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(BookingError):
    """Slot overlap or a duplicate unique field."""

    code = "conflict"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, conflicts: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.conflicts = conflicts or []

    def payload(self) -> Dict[str, Any]:
        body = super().payload()
        if self.conflicts:
            body["conflicting_bookings"] = self.conflicts
        return body


class InvalidTransition(BookingError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None) -> None:
        super().__init__(message)
        self.current = current
        self.target = target


class Forbidden(BookingError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(BookingError):
    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class TransientStoreError(BookingError):
    """Connection or timeout failure; the caller may retry."""

    code = "transient_store_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class PaymentVerificationError(BookingError):
    code = "payment_verification_error"
    status_code = status.HTTP_400_BAD_REQUEST


class PaymentProviderError(BookingError):
    """The payment provider could not be reached or refused the request."""

    code = "payment_provider_error"
    status_code = status.HTTP_502_BAD_GATEWAY


def booking_error_handler(_: Request, exc: BookingError) -> JSONResponse:
    if isinstance(exc, TransientStoreError):
        logger.warning("Transient store failure: %s", exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


def store_error_handler(_: Request, exc: Exception) -> JSONResponse:
    logger.warning("Unhandled store failure: %s", exc)
    error = TransientStoreError("Database unavailable, try again")
    return JSONResponse(status_code=error.status_code, content=error.payload())


def register_error_handlers(app: FastAPI) -> None:
    """Attach the taxonomy handler so every subclass maps to its status code."""

    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(OperationalError, store_error_handler)
    app.add_exception_handler(PoolTimeoutError, store_error_handler)
