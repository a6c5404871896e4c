from __future__ import annotations

from rest_framework import serializers

from .models import Coupon, normalize_code


class CouponSerializer(serializers.ModelSerializer):
    """Backoffice coupon CRUD. Money fields are paise, percentages are basis points."""

    class Meta:
        model = Coupon
        fields = [
            'id', 'code', 'description',
            'discount_type', 'discount_value',
            'min_order_amount', 'max_discount_amount',
            'usage_limit', 'used_count',
            'valid_from', 'valid_until',
            'is_active', 'active_for_customer_end',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'used_count', 'created_at', 'updated_at']

    def validate_code(self, value):
        return normalize_code(value)

    def validate(self, attrs):
        discount_type = attrs.get('discount_type', getattr(self.instance, 'discount_type', Coupon.TYPE_PERCENTAGE))
        discount_value = attrs.get('discount_value', getattr(self.instance, 'discount_value', 0))
        if discount_type == Coupon.TYPE_PERCENTAGE and discount_value > 10000:
            raise serializers.ValidationError({'discount_value': 'Percentage coupons are capped at 10000 bps (100%).'})

        valid_from = attrs.get('valid_from', getattr(self.instance, 'valid_from', None))
        valid_until = attrs.get('valid_until', getattr(self.instance, 'valid_until', None))
        if valid_from and valid_until and valid_until < valid_from:
            raise serializers.ValidationError({'valid_until': 'Must be after valid_from.'})

        usage_limit = attrs.get('usage_limit', getattr(self.instance, 'usage_limit', None))
        if self.instance is not None and usage_limit is not None and usage_limit < self.instance.used_count:
            raise serializers.ValidationError({'usage_limit': 'Cannot be lower than the current used count.'})
        return attrs


class CouponValidateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=64)
    orderAmount = serializers.IntegerField(min_value=0)
