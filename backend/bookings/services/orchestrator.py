from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from django.conf import settings

from core.exceptions import GatewayRejectedError, GatewayUnavailableError, InvalidInputError, InvalidStateError
from bookings.models import Booking
from bookings.pricing import calculate_price
from bookings.repository import BookingRepository, TerminalOutcome
from bookings.services.travelers import normalize_traveler
from payments.gateway import new_order_id
from tours.catalog import PackageQuote, get_package

logger = logging.getLogger(__name__)


@dataclass
class BookingRequest:
    package_id: int
    customer_id: int
    start_date: Optional[date] = None
    number_of_people: Optional[int] = None
    payment_mode: str = Booking.FULL
    channel: str = Booking.CHANNEL_CUSTOMER
    travelers: List[Dict[str, Any]] = field(default_factory=list)
    notes: str = ""
    created_by_id: Optional[int] = None


@dataclass
class BookingCheckout:
    booking: Booking
    payment_url: str
    payment_session_id: str


def initial_status_for(payment_mode: str, channel: str) -> str:
    if payment_mode == Booking.FULL or channel == Booking.CHANNEL_AGENCY_OFFLINE:
        return Booking.PENDING_PAYMENT
    return Booking.PENDING_APPROVAL


class PaymentOrchestrator:
    """Creates bookings and opens the gateway order that collects the amount due now."""

    def __init__(
        self,
        *,
        gateway,
        repository: Optional[BookingRepository] = None,
        catalog: Callable[[Any], PackageQuote] = get_package,
        fee_percent: Optional[Decimal] = None,
    ):
        self.gateway = gateway
        self.repository = repository or BookingRepository()
        self.catalog = catalog
        if fee_percent is None:
            fee_percent = Decimal(str(getattr(settings, "PLATFORM_FEE_PERCENT", "3")))
        self.fee_percent = fee_percent

    def create_booking(self, request: BookingRequest) -> BookingCheckout:
        quote = self.catalog(request.package_id)
        self.repository.ensure_customer(request.customer_id)

        travelers = [normalize_traveler(traveler) for traveler in request.travelers]
        number_of_people = max(request.number_of_people or 0, len(travelers))
        if quote.max_group_size and number_of_people > quote.max_group_size:
            raise InvalidInputError(f"This package allows at most {quote.max_group_size} travelers.")

        start_date = request.start_date or quote.start_date
        if start_date is None:
            raise InvalidInputError("A start date is required for this package.")

        breakdown = calculate_price(
            quote.rate_per_person,
            number_of_people,
            payment_mode=request.payment_mode,
            channel=request.channel,
            fee_percent=self.fee_percent,
        )

        booking = self.repository.create_draft(
            tour_package_id=quote.package_id,
            agency_id=quote.agency_id,
            customer_id=request.customer_id,
            created_by_id=request.created_by_id,
            channel=request.channel,
            payment_mode=request.payment_mode,
            start_date=start_date,
            end_date=start_date + timedelta(days=max(quote.duration_days - 1, 0)),
            number_of_people=number_of_people,
            breakdown=breakdown,
            initial_status=initial_status_for(request.payment_mode, request.channel),
            travelers=travelers,
            notes=request.notes,
        )
        return self._open_order(booking)

    def resume_payment(self, booking_id) -> BookingCheckout:
        """Re-enter checkout for an existing booking instead of creating a new one."""
        booking = self.repository.get(booking_id)
        if booking.status not in Booking.AWAITING_PAYMENT_STATUSES:
            raise InvalidStateError(
                f"Payment cannot be resumed for a {booking.status} booking.",
                booking_id=booking.pk,
            )
        if booking.gateway_order_id:
            return BookingCheckout(
                booking=booking,
                payment_url=booking.payment_url,
                payment_session_id=booking.gateway_session_id,
            )
        return self._open_order(booking)

    def _open_order(self, booking: Booking) -> BookingCheckout:
        order_id = new_order_id()
        base_url = settings.FRONTEND_URL.rstrip("/")
        try:
            handle = self.gateway.create_order(
                amount=booking.amount_due_now,
                correlation_hint=order_id,
                description=booking.tour_package.title,
                success_url=f"{base_url}/payment/success?booking={booking.pk}",
                cancel_url=f"{base_url}/payment/failure?booking={booking.pk}",
                customer_email=booking.customer.email or None,
                metadata={"booking_id": str(booking.pk), "agency_id": str(booking.agency_id)},
            )
        except GatewayRejectedError as exc:
            logger.warning("Gateway rejected order for booking %s: %s", booking.pk, exc.message)
            self.repository.apply_terminal_outcome(
                booking.pk,
                TerminalOutcome.failure(reason=exc.message, record_payment=False),
            )
            raise GatewayRejectedError(exc.message, booking_id=booking.pk) from exc
        except GatewayUnavailableError as exc:
            logger.warning("Gateway unavailable for booking %s; left in %s", booking.pk, booking.status)
            raise GatewayUnavailableError(exc.message, booking_id=booking.pk) from exc

        booking = self.repository.attach_order(
            booking.pk,
            order_id=handle.order_id,
            session_id=handle.payment_session_id,
            payment_url=handle.redirect_url,
        )
        return BookingCheckout(
            booking=booking,
            payment_url=handle.redirect_url,
            payment_session_id=handle.payment_session_id,
        )
