from __future__ import annotations

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone


class Coupon(models.Model):
    """
    Tenant-scoped discount code.

    ``discount_value`` is basis points for percentage coupons (10.00% = 1000)
    and an amount in minor units for fixed coupons. All money columns are paise.
    """

    TYPE_PERCENTAGE = 'percentage'
    TYPE_FIXED = 'fixed'
    DISCOUNT_TYPE_CHOICES = [
        (TYPE_PERCENTAGE, 'Percentage'),
        (TYPE_FIXED, 'Fixed amount'),
    ]

    tenant = models.ForeignKey('core.Tenant', on_delete=models.CASCADE, related_name='coupons')

    code = models.CharField(
        max_length=64,
        help_text="Coupon code, stored upper-case; matching is case-insensitive"
    )
    description = models.CharField(max_length=255, blank=True)

    discount_type = models.CharField(
        max_length=16,
        choices=DISCOUNT_TYPE_CHOICES,
        default=TYPE_PERCENTAGE,
    )
    discount_value = models.BigIntegerField(
        validators=[MinValueValidator(0)],
        help_text="Basis points for percentage coupons, paise for fixed coupons"
    )

    min_order_amount = models.BigIntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Minimum pre-discount order amount in paise"
    )
    max_discount_amount = models.BigIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(0)],
        help_text="Cap for percentage discounts in paise"
    )

    usage_limit = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Total redemptions allowed; blank means unlimited"
    )
    used_count = models.PositiveIntegerField(default=0, editable=False)

    valid_from = models.DateTimeField(null=True, blank=True)
    valid_until = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(default=True)
    active_for_customer_end = models.BooleanField(
        default=True,
        help_text="Offer this coupon to customers ordering online"
    )

    created_at = models.DateTimeField(default=timezone.now, editable=False)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant', 'code']),
            models.Index(fields=['is_active', 'valid_from', 'valid_until']),
        ]
        constraints = [
            models.UniqueConstraint(fields=['tenant', 'code'], name='unique_coupon_code_per_tenant'),
            models.CheckConstraint(
                condition=models.Q(usage_limit__isnull=True) | models.Q(used_count__lte=models.F('usage_limit')),
                name='coupon_used_count_within_limit',
            ),
            models.CheckConstraint(
                condition=~models.Q(discount_type='percentage') | models.Q(discount_value__lte=10000),
                name='coupon_percentage_at_most_100',
            ),
        ]

    def clean(self):
        super().clean()
        if self.code:
            self.code = normalize_code(self.code)
        if self.valid_from and self.valid_until and self.valid_until < self.valid_from:
            raise ValidationError({'valid_until': 'Must be after valid_from.'})
        if self.discount_type == self.TYPE_PERCENTAGE and self.discount_value is not None \
                and self.discount_value > 10000:
            raise ValidationError({'discount_value': 'Percentage coupons are capped at 10000 bps (100%).'})

    def save(self, *args, **kwargs):
        if self.code:
            self.code = normalize_code(self.code)
        super().save(*args, **kwargs)

    @property
    def remaining_uses(self):
        if self.usage_limit is None:
            return None
        return max(self.usage_limit - self.used_count, 0)

    def __str__(self):
        return self.code


class CouponRedemption(models.Model):
    """One row per order that consumed a coupon use."""

    coupon = models.ForeignKey(Coupon, on_delete=models.PROTECT, related_name='redemptions')
    order = models.OneToOneField('orders.Order', on_delete=models.CASCADE, related_name='coupon_redemption')
    discount_amount = models.BigIntegerField(validators=[MinValueValidator(0)])
    redeemed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-redeemed_at']

    def __str__(self):
        return f"{self.coupon.code} on order {self.order_id}"


def normalize_code(code: str) -> str:
    return (code or '').strip().upper()
