from django.db import models


class Payment(models.Model):
    """Append-only ledger row for one charge attempt; never updated once written."""

    booking = models.ForeignKey('bookings.Booking', on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=10, default='inr')
    status = models.CharField(max_length=30)
    payment_type = models.CharField(max_length=10)
    gateway_order_id = models.CharField(max_length=64, blank=True)
    gateway_payment_id = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.status} {self.amount} {self.currency} for booking #{self.booking_id}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Payment records are immutable.")
        super().save(*args, **kwargs)


class WebhookEvent(models.Model):
    RECEIVED = 'RECEIVED'
    PROCESSED = 'PROCESSED'
    IGNORED = 'IGNORED'
    PARKED = 'PARKED'
    STATUSES = [
        (RECEIVED, 'Received'),
        (PROCESSED, 'Processed'),
        (IGNORED, 'Ignored'),
        (PARKED, 'Parked for retry'),
    ]

    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100)
    order_id = models.CharField(max_length=64, blank=True)
    payload = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=12, choices=STATUSES, default=RECEIVED)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.CharField(max_length=500, blank=True)
    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-received_at']

    def __str__(self):
        return f"{self.event_type} {self.event_id} ({self.status})"
