from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import (
    ConcurrentModificationError,
    DuplicateRequestError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from payments.models import Payment

from .models import Booking, RefundRequest
from .pricing import PriceBreakdown
from .services.travelers import create_travelers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TerminalOutcome:
    """Verified payment result to apply to a booking."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

    kind: str
    payment_status: str
    transaction_id: str = ""
    amount: Optional[Decimal] = None
    failure_reason: str = ""
    # Failures that never reached the payer (e.g. order creation) leave no ledger row.
    record_payment: bool = True

    @classmethod
    def success(cls, *, transaction_id: str = "", amount: Optional[Decimal] = None) -> "TerminalOutcome":
        return cls(kind=cls.SUCCESS, payment_status="SUCCESS", transaction_id=transaction_id, amount=amount)

    @classmethod
    def failure(
        cls,
        *,
        payment_status: str = "FAILED",
        reason: str = "",
        transaction_id: str = "",
        amount: Optional[Decimal] = None,
        record_payment: bool = True,
    ) -> "TerminalOutcome":
        return cls(
            kind=cls.FAILURE,
            payment_status=payment_status,
            transaction_id=transaction_id,
            amount=amount,
            failure_reason=reason,
            record_payment=record_payment,
        )

    @property
    def is_success(self) -> bool:
        return self.kind == self.SUCCESS


@dataclass
class WriteResult:
    booking: Booking
    changed: bool


Mutation = Callable[[Booking], Optional[List[str]]]


class BookingRepository:
    """
    Transactional access to bookings and the records they own.

    Every status change goes through `_write`, which locks the booking row and
    applies the change with a version check. A write that loses the version race
    is retried a bounded number of times before `ConcurrentModificationError`.
    """

    def __init__(self, *, max_attempts: Optional[int] = None):
        self.max_attempts = max_attempts or getattr(settings, "BOOKING_LOCK_RETRIES", 3)

    def get(self, booking_id) -> Booking:
        try:
            return (
                Booking.objects.select_related("tour_package", "agency", "customer")
                .prefetch_related("travelers__documents", "payments")
                .get(pk=booking_id)
            )
        except (Booking.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Booking not found.")

    def get_by_order_id(self, order_id: str) -> Booking:
        if not order_id:
            raise NotFoundError("Booking not found for order.")
        try:
            return Booking.objects.select_related("tour_package", "agency", "customer").get(
                gateway_order_id=order_id
            )
        except Booking.DoesNotExist:
            raise NotFoundError("Booking not found for order.")

    def ensure_customer(self, customer_id) -> None:
        User = get_user_model()
        try:
            exists = User.objects.filter(pk=customer_id, is_active=True).exists()
        except (ValueError, TypeError):
            exists = False
        if not exists:
            raise NotFoundError("Customer not found.")

    def create_draft(
        self,
        *,
        tour_package_id: int,
        agency_id: int,
        customer_id: int,
        created_by_id: Optional[int],
        channel: str,
        payment_mode: str,
        start_date,
        end_date,
        number_of_people: int,
        breakdown: PriceBreakdown,
        initial_status: str,
        travelers: Iterable[Dict[str, Any]] = (),
        notes: str = "",
    ) -> Booking:
        with transaction.atomic():
            booking = Booking.objects.create(
                tour_package_id=tour_package_id,
                agency_id=agency_id,
                customer_id=customer_id,
                created_by_id=created_by_id,
                channel=channel,
                payment_mode=payment_mode,
                start_date=start_date,
                end_date=end_date,
                number_of_people=number_of_people,
                total_price=breakdown.total_price,
                platform_fee=breakdown.platform_fee,
                agency_payout_amount=breakdown.agency_payout_amount,
                status=Booking.DRAFT,
                payment_status=Booking.PAYMENT_PENDING,
                notes=notes,
            )
            create_travelers(booking, travelers)

            if not booking.can_transition_to(initial_status):
                raise InvalidStateError(f"A new booking cannot start in {initial_status}.")
            booking.status = initial_status
            booking.version += 1
            booking.save(update_fields=["status", "version", "updated_at"])

        logger.info(
            "Created booking %s (%s, %s) total=%s fee=%s",
            booking.pk,
            booking.payment_mode,
            booking.status,
            booking.total_price,
            booking.platform_fee,
        )
        return booking

    def attach_order(self, booking_id, *, order_id: str, session_id: str = "", payment_url: str = "") -> Booking:
        def mutate(booking: Booking):
            if booking.gateway_order_id:
                raise InvalidStateError("Booking already has a payment order.", booking_id=booking.pk)
            if booking.status not in Booking.AWAITING_PAYMENT_STATUSES:
                raise InvalidStateError(
                    f"Cannot attach a payment order to a {booking.status} booking.",
                    booking_id=booking.pk,
                )
            booking.gateway_order_id = order_id
            booking.gateway_session_id = session_id or ""
            booking.payment_url = payment_url or ""
            return ["gateway_order_id", "gateway_session_id", "payment_url"]

        try:
            result = self._write(booking_id, mutate)
        except IntegrityError:
            raise DuplicateRequestError("Order id is already attached to another booking.", booking_id=booking_id)
        logger.info("Attached order %s to booking %s", order_id, booking_id)
        return result.booking

    def apply_terminal_outcome(self, booking_id, outcome: TerminalOutcome) -> WriteResult:
        """
        Apply a verified payment outcome. Replaying an outcome that is already
        reflected, or one that would move a booking out of a terminal state,
        returns `changed=False` instead of raising.

        A capture reported after the booking was cancelled keeps the booking
        cancelled but is still written to the ledger, once per gateway payment.
        """

        def record_late_capture(booking: Booking):
            already_recorded = Payment.objects.filter(
                booking=booking,
                status=outcome.payment_status,
                gateway_payment_id=outcome.transaction_id,
            ).exists()
            if already_recorded:
                return None
            logger.warning(
                "Payment %s captured for cancelled booking %s; recording it for refund",
                outcome.transaction_id or "(no id)",
                booking.pk,
            )
            booking.payment_status = Booking.PAYMENT_SUCCESS
            booking.transaction_id = outcome.transaction_id or booking.transaction_id
            return ["payment_status", "transaction_id"]

        def mutate(booking: Booking):
            if outcome.is_success:
                if booking.status == Booking.CONFIRMED:
                    return None
                if booking.status == Booking.CANCELLED:
                    return record_late_capture(booking)
                if not booking.can_transition_to(Booking.CONFIRMED):
                    logger.warning(
                        "Ignoring payment success for booking %s in status %s",
                        booking.pk,
                        booking.status,
                    )
                    return None
                booking.status = Booking.CONFIRMED
                booking.payment_status = Booking.PAYMENT_SUCCESS
                booking.transaction_id = outcome.transaction_id or booking.transaction_id
                booking.failure_reason = ""
                if booking.payment_mode == Booking.FULL:
                    booking.agency_approval = True
                else:
                    booking.partial_amount_paid = True
                return [
                    "status",
                    "payment_status",
                    "transaction_id",
                    "failure_reason",
                    "agency_approval",
                    "partial_amount_paid",
                ]

            if booking.is_terminal or not booking.can_transition_to(Booking.FAILED):
                return None
            booking.status = Booking.FAILED
            booking.payment_status = outcome.payment_status
            booking.transaction_id = outcome.transaction_id or booking.transaction_id
            booking.failure_reason = (outcome.failure_reason or "")[:500]
            return ["status", "payment_status", "transaction_id", "failure_reason"]

        def append_payment(booking: Booking):
            if not outcome.record_payment:
                return
            Payment.objects.create(
                booking=booking,
                amount=outcome.amount if outcome.amount is not None else booking.amount_due_now,
                currency=getattr(settings, "PAYMENT_CURRENCY", "inr"),
                status=outcome.payment_status,
                payment_type=booking.payment_mode,
                gateway_order_id=booking.gateway_order_id or "",
                gateway_payment_id=outcome.transaction_id,
            )

        result = self._write(booking_id, mutate, after_write=append_payment)
        if result.changed:
            logger.info(
                "Booking %s moved to %s (payment %s)",
                booking_id,
                result.booking.status,
                result.booking.payment_status,
            )
        else:
            logger.info(
                "Outcome %s for booking %s not applied (already reflected or not allowed from %s)",
                outcome.kind,
                booking_id,
                result.booking.status,
            )
        return result

    def update_status(self, booking_id, target: str, actor=None, *, reason: str = "") -> Booking:
        """Move a booking along an agency-driven transition (completion or decline)."""
        if target not in Booking.AGENCY_STATUS_TARGETS:
            raise InvalidInputError(f"Status {target} cannot be set directly.", booking_id=booking_id)

        def mutate(booking: Booking):
            if not booking.can_transition_to(target):
                raise InvalidStateError(
                    f"Cannot move a {booking.status} booking to {target}.",
                    booking_id=booking.pk,
                )
            booking.status = target
            if target == Booking.FAILED:
                booking.failure_reason = (reason or "Declined by the agency.")[:500]
                return ["status", "failure_reason"]
            return ["status"]

        result = self._write(booking_id, mutate)
        logger.info(
            "Booking %s moved to %s by user %s",
            booking_id,
            target,
            getattr(actor, "pk", None),
        )
        return result.booking

    def request_cancellation(self, booking_id, *, reason: str, requested_by_id: Optional[int] = None) -> RefundRequest:
        created: List[RefundRequest] = []

        def mutate(booking: Booking):
            if booking.refund_requested:
                raise DuplicateRequestError("Cancellation request already submitted.", booking_id=booking.pk)
            if booking.status not in Booking.CANCELLABLE_STATUSES:
                raise InvalidStateError(
                    f"Cancellation is not allowed for a {booking.status} booking.",
                    booking_id=booking.pk,
                )
            booking.refund_requested = True
            booking.refund_status = Booking.REFUND_PENDING
            booking.status = Booking.CANCELLED
            return ["refund_requested", "refund_status", "status"]

        def open_refund(booking: Booking):
            created.append(
                RefundRequest.objects.create(
                    booking=booking,
                    requested_by_id=requested_by_id,
                    amount=booking.amount_due_now,
                    reason=reason,
                    status=RefundRequest.PENDING,
                )
            )

        self._write(booking_id, mutate, after_write=open_refund)
        refund = created[0]
        logger.info("Booking %s cancelled; refund request %s for %s", booking_id, refund.pk, refund.amount)
        return refund

    def resolve_refund(self, refund_id, *, approve: bool, resolved_by_id: Optional[int] = None, note: str = "") -> RefundRequest:
        with transaction.atomic():
            try:
                refund = RefundRequest.objects.select_for_update().get(pk=refund_id)
            except (RefundRequest.DoesNotExist, ValueError, TypeError):
                raise NotFoundError("Refund request not found.")
            if refund.status != RefundRequest.PENDING:
                raise InvalidStateError(f"Refund request is already {refund.status.lower()}.")

            new_status = RefundRequest.APPROVED if approve else RefundRequest.REJECTED
            refund.status = new_status
            refund.resolved_by_id = resolved_by_id
            refund.resolution_note = note
            refund.resolved_at = timezone.now()
            refund.save(update_fields=["status", "resolved_by", "resolution_note", "resolved_at"])

            def mutate(booking: Booking):
                booking.refund_status = new_status
                return ["refund_status"]

            self._write(refund.booking_id, mutate)

        logger.info("Refund request %s %s", refund.pk, new_status.lower())
        return refund

    def record_invoice(self, booking_id, document_ref: str) -> None:
        def mutate(booking: Booking):
            if booking.invoice_document == document_ref:
                return None
            booking.invoice_document = document_ref
            return ["invoice_document"]

        self._write(booking_id, mutate)

    def stale_awaiting_payment(self, *, updated_before: datetime, limit: int = 100) -> List[int]:
        return list(
            Booking.objects.filter(
                status__in=Booking.AWAITING_PAYMENT_STATUSES,
                gateway_order_id__isnull=False,
                updated_at__lt=updated_before,
            )
            .order_by("updated_at")
            .values_list("pk", flat=True)[:limit]
        )

    def _lock(self, booking_id) -> Booking:
        try:
            return (
                Booking.objects.select_for_update(of=("self",))
                .select_related("tour_package", "agency", "customer")
                .get(pk=booking_id)
            )
        except (Booking.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Booking not found.")

    def _write(
        self,
        booking_id,
        mutate: Mutation,
        *,
        after_write: Optional[Callable[[Booking], None]] = None,
    ) -> WriteResult:
        for attempt in range(1, self.max_attempts + 1):
            with transaction.atomic():
                booking = self._lock(booking_id)
                fields = mutate(booking)
                if not fields:
                    return WriteResult(booking=booking, changed=False)

                values = {name: getattr(booking, name) for name in fields}
                values["updated_at"] = timezone.now()
                updated = Booking.objects.filter(pk=booking.pk, version=booking.version).update(
                    version=F("version") + 1,
                    **values,
                )
                if updated:
                    booking.version += 1
                    booking.updated_at = values["updated_at"]
                    if after_write is not None:
                        after_write(booking)
                    return WriteResult(booking=booking, changed=True)

            logger.warning(
                "Booking %s changed during update (attempt %s of %s)",
                booking_id,
                attempt,
                self.max_attempts,
            )
        raise ConcurrentModificationError(booking_id=booking_id)
