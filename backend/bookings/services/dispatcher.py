from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from bookings.models import Booking
from bookings.services.emails import send_booking_confirmation_email, send_cancellation_request_email
from bookings.services.invoices import generate_invoice

logger = logging.getLogger(__name__)

EMAIL = "email"

BOOKING_CONFIRMED = "booking_confirmed"
CANCELLATION_REQUESTED = "cancellation_requested"
CANCELLATION_RECEIVED = "cancellation_received"

Sender = Callable[..., None]


def _send_email(*, kind: str, recipient: str, booking: Booking, details: Mapping[str, Any]) -> None:
    if kind == BOOKING_CONFIRMED:
        send_booking_confirmation_email(
            booking=booking,
            recipients=[recipient],
            transaction_id=details.get("transaction_id", ""),
            invoice_url=details.get("invoice_url"),
        )
    elif kind in (CANCELLATION_REQUESTED, CANCELLATION_RECEIVED):
        send_cancellation_request_email(
            booking=booking,
            recipients=[recipient],
            reason=details.get("reason", ""),
            for_agency=kind == CANCELLATION_RECEIVED,
        )
    else:
        raise ValueError(f"Unknown notification kind: {kind}")


class SideEffectDispatcher:
    """
    Invoice generation and notifications that follow a booking transition.

    Nothing here takes part in the booking transaction. Invoice failures
    propagate to the caller, which decides whether to log them; notifications
    are fire-and-forget and only ever log their failures.
    """

    def __init__(
        self,
        *,
        invoice_generator: Callable[[Booking], str] = generate_invoice,
        senders: Optional[Dict[str, Sender]] = None,
    ):
        self.invoice_generator = invoice_generator
        self.senders = senders if senders is not None else {EMAIL: _send_email}

    def generate_invoice(self, booking: Booking) -> str:
        return self.invoice_generator(booking)

    def notify(
        self,
        channel: str,
        recipient: Optional[str],
        booking: Booking,
        payment_details: Optional[Mapping[str, Any]] = None,
        *,
        kind: str = BOOKING_CONFIRMED,
    ) -> bool:
        if not recipient:
            logger.info("No %s recipient for %s on booking %s", channel, kind, booking.pk)
            return False
        sender = self.senders.get(channel)
        if sender is None:
            logger.warning("No sender configured for channel %s", channel)
            return False
        try:
            sender(kind=kind, recipient=recipient, booking=booking, details=payment_details or {})
        except Exception:
            logger.exception("Failed to send %s %s notification for booking %s", channel, kind, booking.pk)
            return False
        return True

    def booking_confirmed(self, booking: Booking, payment_details: Optional[Mapping[str, Any]] = None) -> None:
        self.notify(EMAIL, booking.customer.email, booking, payment_details, kind=BOOKING_CONFIRMED)
        self.notify(EMAIL, booking.agency.contact_email, booking, payment_details, kind=BOOKING_CONFIRMED)

    def cancellation_requested(self, booking: Booking, reason: str) -> None:
        details = {"reason": reason}
        self.notify(EMAIL, booking.customer.email, booking, details, kind=CANCELLATION_REQUESTED)
        self.notify(EMAIL, booking.agency.contact_email, booking, details, kind=CANCELLATION_RECEIVED)


def build_dispatcher() -> SideEffectDispatcher:
    return SideEffectDispatcher()
