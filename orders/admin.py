from __future__ import annotations

from django.contrib import admin, messages

from core.exceptions import InvariantViolation

from .models import Order, OrderItem, OrderStatusHistory
from .services.ledger import verify_aggregates

MONEY_FIELDS = ('subtotal', 'tax_cgst', 'tax_sgst', 'tax_igst', 'discount_amount', 'total')


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    can_delete = False
    readonly_fields = ('menu_item_ref', 'name_snapshot', 'unit_price', 'qty', 'tax_rate_bps', 'options_snapshot')

    def has_add_permission(self, request, obj=None):
        return False


class OrderStatusHistoryInline(admin.TabularInline):
    model = OrderStatusHistory
    extra = 0
    can_delete = False
    readonly_fields = ('previous_status', 'new_status', 'changed_by', 'note', 'created_at')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Orders are changed through the ledger only; the admin is a read-only window
    onto the aggregates plus a consistency check action.
    """
    list_display = ("id", "tenant", "location", "channel", "status", "subtotal", "discount_amount", "total", "created_at")
    list_filter = ("status", "channel", "tenant", "created_at")
    date_hierarchy = "created_at"
    search_fields = ("=id", "gateway_order_id", "gateway_payment_id", "customer_email")
    ordering = ("-created_at",)
    inlines = [OrderItemInline, OrderStatusHistoryInline]
    actions = ["check_aggregates"]

    readonly_fields = MONEY_FIELDS + (
        "tenant", "location", "location_state", "customer_state", "status", "coupon",
        "gateway_order_id", "gateway_payment_id", "version",
        "placed_at", "accepted_at", "in_kitchen_at", "ready_at", "served_at",
        "completed_at", "canceled_at", "refunded_at", "created_at", "updated_at",
    )

    @admin.action(description="Verify aggregates against items")
    def check_aggregates(self, request, queryset):
        bad = []
        for order in queryset:
            try:
                verify_aggregates(order)
            except InvariantViolation:
                bad.append(order.pk)
        if bad:
            self.message_user(request, f"Aggregate mismatch on orders: {bad}", level=messages.ERROR)
        else:
            self.message_user(request, f"{queryset.count()} order(s) consistent.", level=messages.SUCCESS)
