from __future__ import annotations

from django.contrib import admin

from .models import Coupon, CouponRedemption


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = ("code", "tenant", "discount_type", "discount_value", "is_active",
                    "valid_from", "valid_until", "used_count", "usage_limit", "created_at")
    list_filter = ("tenant", "discount_type", "is_active", "active_for_customer_end")
    search_fields = ("code", "description")
    readonly_fields = ("used_count", "created_at", "updated_at")

    fieldsets = (
        (None, {"fields": ("tenant", "code", "description", "is_active", "active_for_customer_end")}),
        ("Discount", {"fields": ("discount_type", "discount_value", "min_order_amount", "max_discount_amount")}),
        ("Validity", {"fields": ("valid_from", "valid_until", "usage_limit")}),
        ("Usage", {"fields": ("used_count",)}),
        ("Meta", {"fields": ("created_at", "updated_at")}),
    )


@admin.register(CouponRedemption)
class CouponRedemptionAdmin(admin.ModelAdmin):
    list_display = ("coupon", "order", "discount_amount", "redeemed_at")
    search_fields = ("coupon__code", "=order__id")
    readonly_fields = ("coupon", "order", "discount_amount", "redeemed_at")

    def has_add_permission(self, request):
        return False
