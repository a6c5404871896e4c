from django.db import models


class InvoiceSequence(models.Model):
    """Invoice counter for one location and one fiscal year."""

    location = models.ForeignKey('core.Location', on_delete=models.PROTECT, related_name='invoice_sequences')
    fiscal_year = models.PositiveIntegerField(help_text="Starting year of the April-March fiscal year")
    last_number = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Invoice Sequence"
        verbose_name_plural = "Invoice Sequences"
        constraints = [
            models.UniqueConstraint(fields=['location', 'fiscal_year'], name='invoice_sequence_per_location_year'),
        ]

    def __str__(self):
        return f"{self.location.document_prefix}-{self.fiscal_year}: {self.last_number:05d}"


class Invoice(models.Model):
    order = models.OneToOneField('orders.Order', on_delete=models.PROTECT, related_name='invoice')
    location = models.ForeignKey('core.Location', on_delete=models.PROTECT, related_name='invoices')
    invoice_number = models.CharField(max_length=32, unique=True)
    fiscal_year = models.PositiveIntegerField()
    sequence = models.PositiveIntegerField()
    issued_at = models.DateTimeField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-issued_at']
        indexes = [
            models.Index(fields=['location', 'fiscal_year']),
        ]

    def __str__(self):
        return f"Invoice {self.invoice_number} for Order {self.order_id}"
