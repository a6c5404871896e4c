from __future__ import annotations

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q

from core.models import Tenant

# Same ceiling as OrderItem.tax_rate_bps
MAX_TAX_RATE_BPS = 10_000


class MenuItem(models.Model):
    """
    A sellable dish of a tenant.

    Orders placed by customers are always priced from here; the price and GST
    rate are copied onto each ``OrderItem`` when the line is created.
    """

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='menu_items')
    name = models.CharField(max_length=200)
    price = models.BigIntegerField(
        validators=[MinValueValidator(0)],
        help_text="Base price in paise",
    )
    tax_rate_bps = models.PositiveIntegerField(
        default=500,
        validators=[MaxValueValidator(MAX_TAX_RATE_BPS)],
        help_text="GST rate in basis points (500 = 5%)",
    )
    is_available = models.BooleanField(
        default=True,
        help_text="Whether this item can currently be ordered",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['tenant', 'name']
        indexes = [
            models.Index(fields=['tenant', 'is_available']),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(price__gte=0), name='menu_item_price_non_negative'),
            models.CheckConstraint(
                condition=Q(tax_rate_bps__lte=MAX_TAX_RATE_BPS), name='menu_item_tax_rate_in_range',
            ),
        ]

    def __str__(self):
        return self.name
