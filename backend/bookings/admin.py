from django.contrib import admin

from .models import Booking, RefundRequest, Traveler, TravelerDocument


class TravelerInline(admin.TabularInline):
    model = Traveler
    extra = 0


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "tour_package", "customer", "status", "payment_mode", "payment_status", "total_price")
    list_filter = ("status", "payment_mode", "payment_status", "channel")
    search_fields = ("gateway_order_id", "transaction_id", "customer__email", "tour_package__title")
    # Payment state only changes through the repository.
    readonly_fields = (
        "status",
        "payment_status",
        "gateway_order_id",
        "gateway_session_id",
        "transaction_id",
        "total_price",
        "platform_fee",
        "agency_payout_amount",
        "refund_requested",
        "refund_status",
        "version",
    )
    inlines = [TravelerInline]


@admin.register(TravelerDocument)
class TravelerDocumentAdmin(admin.ModelAdmin):
    list_display = ("traveler", "document_type", "document_number")
    list_filter = ("document_type",)
    search_fields = ("document_number", "traveler__full_name")


@admin.register(RefundRequest)
class RefundRequestAdmin(admin.ModelAdmin):
    list_display = ("booking", "amount", "status", "requested_by", "created_at")
    list_filter = ("status",)
    search_fields = ("booking__gateway_order_id", "reason")
    readonly_fields = ("booking", "amount", "requested_by", "resolved_by", "resolved_at")
