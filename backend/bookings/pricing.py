from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from core.exceptions import InvalidInputError

FULL = "FULL"
PARTIAL = "PARTIAL"
CHANNEL_CUSTOMER = "CUSTOMER"
CHANNEL_AGENCY_OFFLINE = "AGENCY_OFFLINE"

DEFAULT_PLATFORM_FEE_PERCENT = Decimal("3")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class PriceBreakdown:
    total_price: Decimal
    platform_fee: Decimal
    agency_payout_amount: Decimal
    amount_due_now: Decimal


def _to_decimal(value, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError(f"{field} must be a number.")


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def amount_due(payment_mode: str, total_price: Decimal, platform_fee: Decimal) -> Decimal:
    """Amount charged at checkout: the whole price, or the platform fee as a deposit."""
    if payment_mode == PARTIAL:
        return platform_fee
    return total_price


def calculate_price(
    rate_per_person,
    traveler_count: int,
    *,
    payment_mode: str = FULL,
    channel: str = CHANNEL_CUSTOMER,
    fee_percent: Optional[Decimal] = None,
) -> PriceBreakdown:
    """
    Split the price of a booking between the platform and the agency.

    Customer bookings pay a fixed percentage of the total as platform fee. Offline
    bookings entered by an agency currently book the whole total as platform fee,
    leaving no payout for the agency; this mirrors the live business rule and is
    pending product clarification.
    """

    if payment_mode not in (FULL, PARTIAL):
        raise InvalidInputError(f"Unknown payment mode: {payment_mode!r}.")
    if channel not in (CHANNEL_CUSTOMER, CHANNEL_AGENCY_OFFLINE):
        raise InvalidInputError(f"Unknown booking channel: {channel!r}.")
    if isinstance(traveler_count, bool) or not isinstance(traveler_count, int) or traveler_count <= 0:
        raise InvalidInputError("Traveler count must be a positive whole number.")

    rate = _to_decimal(rate_per_person, "Rate per person")
    if not rate.is_finite() or rate <= 0:
        raise InvalidInputError("Rate per person must be greater than zero.")

    percent = DEFAULT_PLATFORM_FEE_PERCENT if fee_percent is None else _to_decimal(fee_percent, "Fee percent")
    if percent < 0 or percent > 100:
        raise InvalidInputError("Platform fee percent must be between 0 and 100.")

    total_price = quantize(rate * traveler_count)
    if channel == CHANNEL_AGENCY_OFFLINE:
        platform_fee = total_price
    else:
        platform_fee = quantize(total_price * percent / Decimal(100))

    return PriceBreakdown(
        total_price=total_price,
        platform_fee=platform_fee,
        agency_payout_amount=total_price - platform_fee,
        amount_due_now=amount_due(payment_mode, total_price, platform_fee),
    )
