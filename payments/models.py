from django.db import models
from django.utils import timezone


class PaymentEvent(models.Model):
    """
    Durable record of a gateway payment being applied to an order.

    ``gateway_payment_id`` is unique, so a payment can be applied at most once
    no matter how many times the capture callback or the webhook delivers it.
    Rows are append-only.
    """

    SOURCE_CAPTURE = 'capture'
    SOURCE_WEBHOOK = 'webhook'
    SOURCE_CHOICES = [
        (SOURCE_CAPTURE, 'Capture callback'),
        (SOURCE_WEBHOOK, 'Gateway webhook'),
    ]

    OUTCOME_APPLIED = 'applied'
    OUTCOME_NOOP = 'noop'
    OUTCOME_CHOICES = [
        (OUTCOME_APPLIED, 'Order accepted'),
        (OUTCOME_NOOP, 'Order already past pre-accept'),
    ]

    gateway_payment_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Gateway payment id (pay_...)"
    )
    gateway_order_id = models.CharField(max_length=64, db_index=True)
    event_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Webhook event id when the payment first arrived by webhook"
    )
    order = models.ForeignKey(
        'orders.Order',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='payment_events',
    )
    source = models.CharField(max_length=16, choices=SOURCE_CHOICES)
    amount = models.BigIntegerField(null=True, blank=True, help_text="Amount in paise as reported by the gateway")
    outcome = models.CharField(max_length=16, choices=OUTCOME_CHOICES, blank=True)
    applied_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['order', 'created_at']),
        ]

    def __str__(self):
        return f"{self.gateway_payment_id} -> order {self.order_id} ({self.outcome or 'pending'})"

    @property
    def is_applied(self) -> bool:
        return self.applied_at is not None


class GatewayWebhookEvent(models.Model):
    """
    Webhook deliveries received from the payment gateway, kept for
    idempotency and audit.
    """

    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100)
    payload = models.JSONField(default=dict)
    processed = models.BooleanField(default=False)
    processing_attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-received_at']
        indexes = [
            models.Index(fields=['event_type']),
            models.Index(fields=['processed']),
        ]

    def __str__(self):
        state = "done" if self.processed else "pending"
        return f"[{state}] {self.event_type} - {self.event_id}"

    def mark_processed(self, note=None):
        self.processed = True
        self.processed_at = timezone.now()
        fields = ['processed', 'processed_at']
        if note:
            self.last_error = note
            fields.append('last_error')
        self.save(update_fields=fields)

    def increment_attempts(self, error_message=None):
        self.processing_attempts += 1
        if error_message:
            self.last_error = error_message
        self.save(update_fields=['processing_attempts', 'last_error'])
