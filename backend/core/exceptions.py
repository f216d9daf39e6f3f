from __future__ import annotations

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class BookingError(Exception):
    """Base class for errors raised by the booking and payment services."""

    status_code = 400
    code = "booking_error"
    default_message = "The booking request could not be completed."

    def __init__(self, message: str | None = None, *, booking_id: int | None = None):
        self.message = message or self.default_message
        self.booking_id = booking_id
        super().__init__(self.message)


class InvalidInputError(BookingError):
    status_code = 400
    code = "invalid_input"
    default_message = "Invalid booking request."


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class InvalidStateError(BookingError):
    status_code = 409
    code = "invalid_state"
    default_message = "The booking is not in a state that allows this action."


class DuplicateRequestError(BookingError):
    status_code = 409
    code = "duplicate_request"
    default_message = "This request has already been submitted."


class ConcurrentModificationError(BookingError):
    status_code = 409
    code = "concurrent_modification"
    default_message = "The booking was modified concurrently. Please retry."


class GatewayError(BookingError):
    status_code = 502
    code = "gateway_error"


class GatewayUnavailableError(GatewayError):
    """Transient gateway failure: outcome unknown, safe to retry."""

    status_code = 503
    code = "gateway_unavailable"
    default_message = "The payment provider is temporarily unavailable. Please try again."


class GatewayRejectedError(GatewayError):
    """Business-level rejection reported by the gateway."""

    status_code = 502
    code = "gateway_rejected"
    default_message = "The payment provider rejected the request."


def api_exception_handler(exc, context):
    if isinstance(exc, BookingError):
        payload = {"detail": exc.message, "code": exc.code}
        if exc.booking_id is not None:
            payload["booking_id"] = exc.booking_id
        if exc.status_code >= 500:
            logger.warning("Booking request failed (%s): %s", exc.code, exc.message)
        return Response(payload, status=exc.status_code)
    return exception_handler(exc, context)
