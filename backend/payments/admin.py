from django.contrib import admin

from .models import Payment, WebhookEvent


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("booking", "amount", "currency", "status", "payment_type", "created_at")
    list_filter = ("status", "payment_type")
    search_fields = ("gateway_order_id", "gateway_payment_id")

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "order_id", "status", "attempts", "received_at")
    list_filter = ("status", "event_type")
    search_fields = ("event_id", "order_id")
    readonly_fields = ("payload", "received_at", "processed_at")
