from __future__ import annotations

from typing import Iterable, Optional

from django.conf import settings
from django.core.mail import send_mail

from bookings.models import Booking


def _format_from_email(agency_name: str) -> str:
    default_from = settings.DEFAULT_FROM_EMAIL
    email_addr = default_from
    if '<' in default_from and default_from.endswith('>'):
        email_addr = default_from.split('<', 1)[1].rstrip('>')
    return f"{agency_name} via TripDesk <{email_addr}>"


def _trip_dates(booking: Booking) -> str:
    if booking.end_date:
        return f"{booking.start_date:%B %d, %Y} to {booking.end_date:%B %d, %Y}"
    return f"{booking.start_date:%B %d, %Y}"


def send_booking_confirmation_email(
    *,
    booking: Booking,
    recipients: Iterable[str],
    transaction_id: str = "",
    invoice_url: Optional[str] = None,
):
    package = booking.tour_package
    agency_name = booking.agency.name
    customer = booking.customer
    subject = f"{package.title} booking confirmed"

    if booking.payment_mode == Booking.PARTIAL:
        paid_line = f"Deposit received: {booking.platform_fee}. Balance due to {agency_name}: {booking.agency_payout_amount}."
    else:
        paid_line = f"Amount paid: {booking.total_price}."

    body_lines = [
        f"Hi {customer.full_name},",
        "",
        f"Your booking #{booking.pk} for {package.title} with {agency_name} is confirmed.",
        f"Travel dates: {_trip_dates(booking)}.",
        f"Travelers: {booking.number_of_people}.",
        paid_line,
    ]
    if transaction_id:
        body_lines.append(f"Transaction reference: {transaction_id}.")
    if invoice_url:
        body_lines.append(f"Invoice: {invoice_url}")
    body_lines += [
        "",
        "If you have any questions, reply to this email and the agency will assist you.",
        "",
        "The TripDesk Team",
    ]
    send_mail(
        subject,
        "\n".join(body_lines),
        _format_from_email(agency_name),
        list(recipients),
        fail_silently=False,
    )


def send_cancellation_request_email(
    *,
    booking: Booking,
    recipients: Iterable[str],
    reason: str,
    for_agency: bool = False,
):
    if for_agency:
        subject = "New cancellation request"
        opening = f"A cancellation request has been submitted for booking #{booking.pk}."
    else:
        subject = "Cancellation request submitted"
        opening = f"Your cancellation request for booking #{booking.pk} has been submitted."

    body_lines = [
        opening,
        f"Package: {booking.tour_package.title} ({_trip_dates(booking)}).",
        f"Reason: {reason}",
        "",
        "Refunds are reviewed by our team; you will hear from us once a decision is made.",
        "",
        "The TripDesk Team",
    ]
    send_mail(
        subject,
        "\n".join(body_lines),
        _format_from_email(booking.agency.name),
        list(recipients),
        fail_silently=False,
    )
