from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q


class Booking(models.Model):
    """Reservation of a tour package by one customer; may cover several travelers."""

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    STATUSES = [
        (DRAFT, "Draft"),
        (PENDING, "Pending"),
        (PENDING_PAYMENT, "Pending payment"),
        (PENDING_APPROVAL, "Pending approval"),
        (CONFIRMED, "Confirmed"),
        (FAILED, "Failed"),
        (CANCELLED, "Cancelled"),
        (COMPLETED, "Completed"),
    ]

    AWAITING_PAYMENT_STATUSES = frozenset({PENDING, PENDING_PAYMENT, PENDING_APPROVAL})
    TERMINAL_STATUSES = frozenset({CONFIRMED, FAILED, CANCELLED, COMPLETED})
    CANCELLABLE_STATUSES = frozenset({PENDING, CONFIRMED, PENDING_APPROVAL, PENDING_PAYMENT})
    # Payment and cancellation workflows own the other transitions.
    AGENCY_STATUS_TARGETS = frozenset({COMPLETED, FAILED})

    # FAILED -> CONFIRMED covers a capture reported after an earlier failed attempt.
    TRANSITIONS = {
        DRAFT: {PENDING_PAYMENT, PENDING_APPROVAL, FAILED, CANCELLED},
        PENDING: {CONFIRMED, FAILED, CANCELLED},
        PENDING_PAYMENT: {CONFIRMED, FAILED, CANCELLED},
        PENDING_APPROVAL: {CONFIRMED, FAILED, CANCELLED},
        CONFIRMED: {CANCELLED, COMPLETED},
        FAILED: {CONFIRMED},
        CANCELLED: set(),
        COMPLETED: set(),
    }

    FULL = "FULL"
    PARTIAL = "PARTIAL"
    PAYMENT_MODES = [
        (FULL, "Full payment"),
        (PARTIAL, "Partial payment (deposit)"),
    ]

    CHANNEL_CUSTOMER = "CUSTOMER"
    CHANNEL_AGENCY_OFFLINE = "AGENCY_OFFLINE"
    CHANNELS = [
        (CHANNEL_CUSTOMER, "Customer"),
        (CHANNEL_AGENCY_OFFLINE, "Agency (offline)"),
    ]

    PAYMENT_PENDING = "PENDING"
    PAYMENT_SUCCESS = "SUCCESS"

    REFUND_NONE = ""
    REFUND_PENDING = "PENDING"
    REFUND_APPROVED = "APPROVED"
    REFUND_REJECTED = "REJECTED"
    REFUND_STATUSES = [
        (REFUND_NONE, "None"),
        (REFUND_PENDING, "Pending"),
        (REFUND_APPROVED, "Approved"),
        (REFUND_REJECTED, "Rejected"),
    ]

    tour_package = models.ForeignKey("tours.TourPackage", on_delete=models.PROTECT, related_name="bookings")
    agency = models.ForeignKey("agencies.Agency", on_delete=models.PROTECT, related_name="bookings")
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="entered_bookings",
    )
    channel = models.CharField(max_length=20, choices=CHANNELS, default=CHANNEL_CUSTOMER)
    start_date = models.DateField()
    end_date = models.DateField(null=True, blank=True)
    number_of_people = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=12, decimal_places=2)
    agency_payout_amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_mode = models.CharField(max_length=10, choices=PAYMENT_MODES, default=FULL)
    status = models.CharField(max_length=20, choices=STATUSES, default=DRAFT)
    payment_status = models.CharField(max_length=20, default=PAYMENT_PENDING)
    gateway_order_id = models.CharField(max_length=64, unique=True, null=True, blank=True)
    gateway_session_id = models.CharField(max_length=255, blank=True)
    payment_url = models.URLField(max_length=1000, blank=True)
    transaction_id = models.CharField(max_length=255, blank=True)
    failure_reason = models.CharField(max_length=500, blank=True)
    agency_approval = models.BooleanField(default=False)
    partial_amount_paid = models.BooleanField(default=False)
    refund_requested = models.BooleanField(default=False)
    refund_status = models.CharField(max_length=12, choices=REFUND_STATUSES, default=REFUND_NONE, blank=True)
    invoice_document = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(agency_payout_amount__gte=0),
                name="booking_payout_non_negative",
            ),
        ]

    def __str__(self):
        return f"Booking #{self.pk} ({self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_payment_mode = instance.__dict__.get("payment_mode")
        return instance

    def save(self, *args, **kwargs):
        loaded_mode = getattr(self, "_loaded_payment_mode", None)
        if self.pk and loaded_mode is not None and loaded_mode != self.payment_mode:
            raise ValueError("payment_mode cannot change once a booking exists.")
        super().save(*args, **kwargs)
        self._loaded_payment_mode = self.payment_mode

    def can_transition_to(self, target: str) -> bool:
        return target in self.TRANSITIONS.get(self.status, set())

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def amount_due_now(self) -> Decimal:
        if self.payment_mode == self.PARTIAL:
            return self.platform_fee
        return self.total_price


class Traveler(models.Model):
    """A person covered by a booking; owned by exactly one booking."""

    booking = models.ForeignKey("Booking", on_delete=models.CASCADE, related_name="travelers")
    full_name = models.CharField(max_length=200)
    age = models.PositiveIntegerField(null=True, blank=True)
    gender = models.CharField(max_length=20, blank=True)
    email = models.EmailField(blank=True)
    phone_number = models.CharField(max_length=30, blank=True)
    is_primary = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-is_primary", "id"]

    def __str__(self):
        return self.full_name


class TravelerDocument(models.Model):
    PASSPORT = "PASSPORT"
    NATIONAL_ID = "NATIONAL_ID"
    DRIVING_LICENSE = "DRIVING_LICENSE"
    OTHER = "OTHER"
    DOCUMENT_TYPES = [
        (PASSPORT, "Passport"),
        (NATIONAL_ID, "National ID"),
        (DRIVING_LICENSE, "Driving license"),
        (OTHER, "Other"),
    ]

    traveler = models.ForeignKey("Traveler", on_delete=models.CASCADE, related_name="documents")
    document_type = models.CharField(max_length=20, choices=DOCUMENT_TYPES)
    document_number = models.CharField(max_length=100)
    file_url = models.URLField(max_length=1000, blank=True)

    def __str__(self):
        return f"{self.get_document_type_display()} {self.document_number}"


class RefundRequest(models.Model):
    """Refund claim raised when a booking is cancelled."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    STATUSES = [
        (PENDING, "Pending"),
        (APPROVED, "Approved"),
        (REJECTED, "Rejected"),
    ]

    booking = models.ForeignKey("Booking", on_delete=models.CASCADE, related_name="refund_requests")
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="refund_requests",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    reason = models.TextField()
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING)
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="resolved_refund_requests",
    )
    resolution_note = models.TextField(blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["booking"],
                condition=Q(status="PENDING"),
                name="one_pending_refund_per_booking",
            ),
        ]

    def __str__(self):
        return f"Refund {self.amount} for booking #{self.booking_id} ({self.status})"
