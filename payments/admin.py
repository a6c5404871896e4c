from django.contrib import admin

from .models import GatewayWebhookEvent, PaymentEvent


@admin.register(PaymentEvent)
class PaymentEventAdmin(admin.ModelAdmin):
    list_display = ("gateway_payment_id", "gateway_order_id", "order", "source", "amount", "outcome", "applied_at", "created_at")
    list_filter = ("source", "outcome", "created_at")
    search_fields = ("gateway_payment_id", "gateway_order_id", "event_id")
    readonly_fields = [f.name for f in PaymentEvent._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(GatewayWebhookEvent)
class GatewayWebhookEventAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "processed", "processing_attempts", "received_at", "processed_at")
    list_filter = ("processed", "event_type", "received_at")
    search_fields = ("event_id", "event_type")
    readonly_fields = ("event_id", "event_type", "payload", "processing_attempts", "last_error", "received_at", "processed_at")
    date_hierarchy = "received_at"

    def has_add_permission(self, request):
        return False
