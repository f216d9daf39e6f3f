from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from django.core.files.storage import default_storage

from bookings.models import Booking
from bookings.repository import BookingRepository, TerminalOutcome
from core.exceptions import GatewayError
from payments.gateway import FAILURE_STATUSES, OrderStatus, PaymentEvent, PaymentEventStatus

logger = logging.getLogger(__name__)


class ReconciliationOutcome(str, Enum):
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    PENDING = "PENDING"
    UNKNOWN = "UNKNOWN"


@dataclass
class ReconciliationResult:
    booking: Booking
    outcome: ReconciliationOutcome
    changed: bool = False
    message: str = ""

    @property
    def is_known(self) -> bool:
        return self.outcome != ReconciliationOutcome.UNKNOWN


_STATUS_OUTCOMES = {
    Booking.CONFIRMED: ReconciliationOutcome.CONFIRMED,
    Booking.COMPLETED: ReconciliationOutcome.CONFIRMED,
    Booking.FAILED: ReconciliationOutcome.FAILED,
    Booking.CANCELLED: ReconciliationOutcome.CANCELLED,
}

PENDING_MESSAGE = "Payment status is pending. Please check back shortly."


def outcome_for(booking: Booking) -> ReconciliationOutcome:
    return _STATUS_OUTCOMES.get(booking.status, ReconciliationOutcome.PENDING)


def select_authoritative(events: Iterable[PaymentEvent]) -> Optional[PaymentEvent]:
    """Latest SUCCESS wins; otherwise the most recent event of any status."""
    events = sorted(events, key=lambda event: event.created_at)
    if not events:
        return None
    successes = [event for event in events if event.status == PaymentEventStatus.SUCCESS]
    if successes:
        return successes[-1]
    return events[-1]


class ReconciliationEngine:
    """
    Applies the gateway's view of a booking's payments to the local record.

    The return flow and the webhook both land here. Every step is safe to
    repeat: the repository ignores outcomes that are already reflected, and
    side effects only run when a write actually changed the booking.
    """

    def __init__(self, *, gateway, repository: Optional[BookingRepository] = None, dispatcher=None):
        self.gateway = gateway
        self.repository = repository or BookingRepository()
        self.dispatcher = dispatcher

    def reconcile_order(self, order_id: str) -> ReconciliationResult:
        booking = self.repository.get_by_order_id(order_id)
        return self.reconcile_booking(booking.pk)

    def reconcile_booking(self, booking_id) -> ReconciliationResult:
        booking = self.repository.get(booking_id)
        if not booking.gateway_order_id:
            return ReconciliationResult(booking=booking, outcome=outcome_for(booking))

        order_id = booking.gateway_order_id
        try:
            events = self.gateway.fetch_payments(order_id, session_id=booking.gateway_session_id or None)
        except GatewayError as exc:
            logger.warning("Could not fetch payments for booking %s (%s): %s", booking.pk, order_id, exc.message)
            return ReconciliationResult(booking=booking, outcome=ReconciliationOutcome.UNKNOWN, message=PENDING_MESSAGE)

        event = select_authoritative(events)
        if event is None:
            return self._reconcile_without_payments(booking)

        if event.status == PaymentEventStatus.SUCCESS:
            result = self.repository.apply_terminal_outcome(
                booking.pk,
                TerminalOutcome.success(transaction_id=event.payment_id, amount=event.amount),
            )
            if result.changed and result.booking.status == Booking.CONFIRMED:
                self._after_confirmation(result.booking, event)
            return ReconciliationResult(booking=result.booking, outcome=outcome_for(result.booking), changed=result.changed)

        if event.status in FAILURE_STATUSES:
            result = self.repository.apply_terminal_outcome(
                booking.pk,
                TerminalOutcome.failure(
                    payment_status=event.status.value,
                    reason=event.failure_reason,
                    transaction_id=event.payment_id,
                    amount=event.amount,
                ),
            )
            return ReconciliationResult(
                booking=result.booking,
                outcome=outcome_for(result.booking),
                changed=result.changed,
                message=result.booking.failure_reason,
            )

        logger.info("Payment %s for booking %s is %s", event.payment_id, booking.pk, event.status.value)
        return ReconciliationResult(booking=booking, outcome=outcome_for(booking), message=PENDING_MESSAGE)

    def _reconcile_without_payments(self, booking: Booking) -> ReconciliationResult:
        try:
            state = self.gateway.fetch_order_status(
                booking.gateway_order_id,
                session_id=booking.gateway_session_id or None,
            )
        except GatewayError as exc:
            logger.warning("Could not fetch order %s: %s", booking.gateway_order_id, exc.message)
            return ReconciliationResult(booking=booking, outcome=ReconciliationOutcome.UNKNOWN, message=PENDING_MESSAGE)

        if state.status != OrderStatus.EXPIRED:
            return ReconciliationResult(booking=booking, outcome=outcome_for(booking), message=PENDING_MESSAGE)

        result = self.repository.apply_terminal_outcome(
            booking.pk,
            TerminalOutcome.failure(
                payment_status=PaymentEventStatus.USER_DROPPED.value,
                reason="Checkout expired before payment was completed.",
                record_payment=False,
            ),
        )
        return ReconciliationResult(
            booking=result.booking,
            outcome=outcome_for(result.booking),
            changed=result.changed,
            message=result.booking.failure_reason,
        )

    def _after_confirmation(self, booking: Booking, event: PaymentEvent) -> None:
        if self.dispatcher is None:
            return
        details = {"transaction_id": event.payment_id, "amount": event.amount}
        try:
            document_ref = self.dispatcher.generate_invoice(booking)
            self.repository.record_invoice(booking.pk, document_ref)
            booking.invoice_document = document_ref
            details["invoice_url"] = default_storage.url(document_ref)
        except Exception:
            logger.exception("Invoice generation failed for booking %s", booking.pk)
        try:
            self.dispatcher.booking_confirmed(booking, details)
        except Exception:
            logger.exception("Confirmation notifications failed for booking %s", booking.pk)
