from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from bookings.repository import BookingRepository
from bookings.services.dispatcher import build_dispatcher
from core.exceptions import BookingError
from payments.gateway import build_gateway
from payments.services.reconciliation import ReconciliationEngine, ReconciliationOutcome
from payments.services.webhooks import retry_parked_events


class Command(BaseCommand):
    help = "Retry parked payment webhooks and reconcile bookings stuck awaiting payment."

    def add_arguments(self, parser):
        parser.add_argument(
            "--older-than",
            type=int,
            default=None,
            help="Minutes since the booking was last updated (defaults to RECONCILE_AFTER_MINUTES).",
        )
        parser.add_argument("--limit", type=int, default=100)

    def handle(self, *args, **options):
        minutes = options["older_than"]
        if minutes is None:
            minutes = getattr(settings, "RECONCILE_AFTER_MINUTES", 10)
        limit = options["limit"]

        repository = BookingRepository()
        engine = ReconciliationEngine(gateway=build_gateway(), repository=repository, dispatcher=build_dispatcher())

        self.stdout.write(self.style.MIGRATE_HEADING("Retrying parked webhook events"))
        recovered = retry_parked_events(engine, limit=limit)
        self.stdout.write(f"Recovered {recovered} parked event(s).")

        self.stdout.write(self.style.MIGRATE_HEADING("Reconciling stale bookings"))
        cutoff = timezone.now() - timedelta(minutes=minutes)
        counts = {outcome: 0 for outcome in ReconciliationOutcome}
        for booking_id in repository.stale_awaiting_payment(updated_before=cutoff, limit=limit):
            try:
                result = engine.reconcile_booking(booking_id)
            except BookingError as exc:
                self.stderr.write(f"Booking {booking_id}: {exc.message}")
                continue
            counts[result.outcome] += 1

        summary = ", ".join(f"{outcome.value.lower()}={count}" for outcome, count in counts.items() if count)
        self.stdout.write(self.style.SUCCESS(f"Reconciliation finished. {summary or 'nothing to do'}"))
