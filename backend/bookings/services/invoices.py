from __future__ import annotations

from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.utils import timezone

from bookings.models import Booking


def render_invoice(booking: Booking) -> str:
    package = booking.tour_package
    lines = [
        f"INVOICE: Booking #{booking.pk}",
        f"Issued: {timezone.now():%Y-%m-%d}",
        "",
        f"Agency: {booking.agency.name}",
        f"Customer: {booking.customer.full_name} <{booking.customer.email}>",
        f"Package: {package.title} ({package.destination})",
        f"Start date: {booking.start_date:%Y-%m-%d}",
        f"Travelers: {booking.number_of_people}",
        "",
        f"Rate per person: {package.price_per_person}",
        f"Total price: {booking.total_price}",
        f"Platform fee: {booking.platform_fee}",
        f"Payment mode: {booking.get_payment_mode_display()}",
        f"Amount paid: {booking.amount_due_now}",
    ]
    if booking.transaction_id:
        lines.append(f"Transaction reference: {booking.transaction_id}")
    return "\n".join(lines) + "\n"


def generate_invoice(booking: Booking) -> str:
    """Store the invoice in media storage and return its storage name."""
    name = f"invoices/invoice_{booking.pk}.txt"
    if default_storage.exists(name):
        default_storage.delete(name)
    return default_storage.save(name, ContentFile(render_invoice(booking).encode("utf-8")))
