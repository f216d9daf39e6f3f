from __future__ import annotations

import logging
from typing import Optional

from django.db import transaction

from bookings.models import RefundRequest
from bookings.repository import BookingRepository
from core.exceptions import InvalidInputError

logger = logging.getLogger(__name__)


class CancellationWorkflow:
    """Customer-initiated cancellation and the admin refund decision that follows it."""

    def __init__(self, *, repository: Optional[BookingRepository] = None, dispatcher=None):
        self.repository = repository or BookingRepository()
        self.dispatcher = dispatcher

    def request_cancellation(self, booking_id, actor, reason: str) -> RefundRequest:
        reason = (reason or "").strip()
        if not reason:
            raise InvalidInputError("A cancellation reason is required.")

        refund = self.repository.request_cancellation(
            booking_id,
            reason=reason,
            requested_by_id=getattr(actor, "pk", None),
        )
        if self.dispatcher is not None:
            booking = refund.booking
            transaction.on_commit(lambda: self.dispatcher.cancellation_requested(booking, reason))
        return refund

    def resolve_refund(self, refund_id, actor, *, approve: bool, note: str = "") -> RefundRequest:
        return self.repository.resolve_refund(
            refund_id,
            approve=approve,
            resolved_by_id=getattr(actor, "pk", None),
            note=(note or "").strip(),
        )
