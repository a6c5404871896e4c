from __future__ import annotations

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q

from core import money
from core.gst import TaxBreakdown, compute_item_tax

# GST slabs top out at 28%; 100% is a hard ceiling for any stored rate
MAX_TAX_RATE_BPS = 10_000


class Order(models.Model):
    """
    An order and its cached monetary aggregates, all in paise.

    The aggregates are only ever written through ``orders.services.ledger``,
    which guards each write with ``version``.
    """

    STATUS_PLACED = 'placed'
    STATUS_ACCEPTED = 'accepted'
    STATUS_IN_KITCHEN = 'in_kitchen'
    STATUS_READY = 'ready'
    STATUS_SERVED = 'served'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELED = 'canceled'
    STATUS_REFUNDED = 'refunded'

    STATUS_CHOICES = [
        (STATUS_PLACED, 'Placed'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_IN_KITCHEN, 'In kitchen'),
        (STATUS_READY, 'Ready'),
        (STATUS_SERVED, 'Served'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELED, 'Canceled'),
        (STATUS_REFUNDED, 'Refunded'),
    ]

    VALID_STATUS_TRANSITIONS = {
        STATUS_PLACED: [STATUS_ACCEPTED, STATUS_CANCELED],
        STATUS_ACCEPTED: [STATUS_IN_KITCHEN, STATUS_CANCELED],
        STATUS_IN_KITCHEN: [STATUS_READY, STATUS_CANCELED],
        STATUS_READY: [STATUS_SERVED, STATUS_CANCELED],
        STATUS_SERVED: [STATUS_COMPLETED, STATUS_CANCELED],
        STATUS_COMPLETED: [STATUS_REFUNDED],
        STATUS_CANCELED: [],
        STATUS_REFUNDED: [],
    }

    EDITABLE_STATUSES = frozenset({STATUS_PLACED, STATUS_ACCEPTED, STATUS_IN_KITCHEN, STATUS_READY})
    PRE_ACCEPT_STATUSES = frozenset({STATUS_PLACED})

    STATUS_TIMESTAMP_FIELDS = {
        STATUS_PLACED: 'placed_at',
        STATUS_ACCEPTED: 'accepted_at',
        STATUS_IN_KITCHEN: 'in_kitchen_at',
        STATUS_READY: 'ready_at',
        STATUS_SERVED: 'served_at',
        STATUS_COMPLETED: 'completed_at',
        STATUS_CANCELED: 'canceled_at',
        STATUS_REFUNDED: 'refunded_at',
    }

    CHANNEL_CUSTOMER = 'customer'
    CHANNEL_STAFF = 'staff'
    CHANNEL_CHOICES = [
        (CHANNEL_CUSTOMER, 'Customer (online)'),
        (CHANNEL_STAFF, 'Staff (POS)'),
    ]

    tenant = models.ForeignKey('core.Tenant', on_delete=models.PROTECT, related_name='orders')
    location = models.ForeignKey('core.Location', on_delete=models.PROTECT, related_name='orders')
    channel = models.CharField(max_length=16, choices=CHANNEL_CHOICES, default=CHANNEL_CUSTOMER)

    # GST place of supply, fixed when the order is placed
    location_state = models.CharField(max_length=2)
    customer_state = models.CharField(max_length=2, null=True, blank=True)

    customer_name = models.CharField(max_length=200, blank=True)
    customer_email = models.EmailField(blank=True)
    customer_phone = models.CharField(max_length=20, blank=True)

    subtotal = models.BigIntegerField(default=0)
    tax_cgst = models.BigIntegerField(default=0)
    tax_sgst = models.BigIntegerField(default=0)
    tax_igst = models.BigIntegerField(default=0)
    discount_amount = models.BigIntegerField(default=0)
    total = models.BigIntegerField(default=0)

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PLACED, db_index=True)
    coupon = models.ForeignKey(
        'coupons.Coupon', null=True, blank=True, on_delete=models.PROTECT, related_name='orders',
    )

    gateway_order_id = models.CharField(max_length=64, unique=True, null=True, blank=True)
    gateway_payment_id = models.CharField(max_length=64, unique=True, null=True, blank=True)

    version = models.PositiveIntegerField(default=0)

    placed_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    in_kitchen_at = models.DateTimeField(null=True, blank=True)
    ready_at = models.DateTimeField(null=True, blank=True)
    served_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant', 'status']),
            models.Index(fields=['location', 'created_at']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(subtotal__gte=0) & Q(tax_cgst__gte=0) & Q(tax_sgst__gte=0) & Q(tax_igst__gte=0),
                name='order_aggregates_non_negative',
            ),
            models.CheckConstraint(
                condition=Q(discount_amount__gte=0) & Q(total__gte=0),
                name='order_total_non_negative',
            ),
            models.CheckConstraint(
                condition=Q(total=F('subtotal') + F('tax_cgst') + F('tax_sgst') + F('tax_igst') - F('discount_amount')),
                name='order_total_matches_components',
            ),
        ]

    def __str__(self):
        return f"Order #{self.pk} ({self.status})"

    @property
    def tax(self) -> TaxBreakdown:
        return TaxBreakdown.of(self.tax_cgst, self.tax_sgst, self.tax_igst)

    @property
    def total_tax(self) -> int:
        return money.add(self.tax_cgst, self.tax_sgst, self.tax_igst)

    @property
    def is_editable(self) -> bool:
        return self.status in self.EDITABLE_STATUSES

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in self.VALID_STATUS_TRANSITIONS.get(self.status, [])


class OrderItem(models.Model):
    """A line on an order. Price, name and tax rate are snapshots taken at order time."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    menu_item_ref = models.CharField(max_length=64, blank=True)
    name_snapshot = models.CharField(max_length=200)
    unit_price = models.BigIntegerField(validators=[MinValueValidator(0)])
    qty = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    tax_rate_bps = models.PositiveIntegerField(validators=[MaxValueValidator(MAX_TAX_RATE_BPS)])
    options_snapshot = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['id']
        constraints = [
            models.CheckConstraint(condition=Q(unit_price__gte=0), name='order_item_price_non_negative'),
            models.CheckConstraint(condition=Q(qty__gte=1), name='order_item_qty_positive'),
            models.CheckConstraint(condition=Q(tax_rate_bps__lte=MAX_TAX_RATE_BPS), name='order_item_rate_bounded'),
        ]

    def __str__(self):
        return f"{self.qty} x {self.name_snapshot}"

    @property
    def line_subtotal(self) -> int:
        return money.multiply_qty(self.unit_price, self.qty)

    def tax_breakdown(self, location_state, customer_state=None) -> TaxBreakdown:
        return compute_item_tax(self.line_subtotal, self.tax_rate_bps, location_state, customer_state)


class OrderStatusHistory(models.Model):
    """
    Audit trail of status changes.
    """
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='status_history')
    previous_status = models.CharField(max_length=16, choices=Order.STATUS_CHOICES, null=True, blank=True)
    new_status = models.CharField(max_length=16, choices=Order.STATUS_CHOICES)
    changed_by = models.CharField(max_length=150, blank=True, help_text="Username or system actor")
    note = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']
        verbose_name_plural = 'Order status history'

    def __str__(self):
        return f"Order {self.order_id}: {self.previous_status or '-'} -> {self.new_status}"
