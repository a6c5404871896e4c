import re

from django.core.exceptions import ValidationError
from django.core.validators import RegexValidator
from django.db import models
from django.utils.html import strip_tags


# GST state codes are two digits ("27") or the two-letter postal code ("MH")
state_code_validator = RegexValidator(
    regex=r'^([0-9]{2}|[A-Za-z]{2})$',
    message="State code must be a two-digit GST code or a two-letter state abbreviation.",
)

gstin_validator = RegexValidator(
    regex=r'^[0-9]{2}[A-Z0-9]{13}$',
    message="GSTIN must be 15 characters starting with the two-digit state code.",
)


class Tenant(models.Model):
    """A restaurant business. Every order, coupon and location belongs to one."""

    name = models.CharField(
        max_length=200,
        help_text="Tenant name (HTML tags will be stripped)"
    )
    slug = models.SlugField(max_length=80, unique=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        indexes = [
            models.Index(fields=['slug']),
        ]

    def clean(self):
        super().clean()
        if self.name:
            self.name = strip_tags(self.name).strip()
            if not self.name:
                raise ValidationError({'name': 'Tenant name cannot be empty after sanitization.'})

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


class Location(models.Model):
    """An outlet of a tenant. Its state code decides intra- vs inter-state GST."""

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='locations')
    name = models.CharField(max_length=200)
    address = models.TextField(blank=True)
    state_code = models.CharField(
        max_length=2,
        validators=[state_code_validator],
        help_text="GST state of the outlet, e.g. 27 or MH",
    )
    gstin = models.CharField(max_length=15, blank=True, validators=[gstin_validator])
    invoice_prefix = models.CharField(
        max_length=3,
        blank=True,
        validators=[RegexValidator(r'^[A-Za-z0-9]{3}$', "Invoice prefix must be 3 letters or digits.")],
        help_text="Leave blank to derive from the location name",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['tenant', 'name']
        indexes = [
            models.Index(fields=['tenant', 'is_active']),
        ]

    def clean(self):
        super().clean()
        if self.name:
            self.name = strip_tags(self.name).strip()
        if self.state_code:
            self.state_code = self.state_code.strip().upper()
        if self.gstin:
            self.gstin = self.gstin.strip().upper()
        if self.invoice_prefix:
            self.invoice_prefix = self.invoice_prefix.strip().upper()

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    @property
    def document_prefix(self) -> str:
        """Three upper-case characters identifying this outlet on invoices."""
        if self.invoice_prefix:
            return self.invoice_prefix
        letters = re.sub(r'[^A-Za-z0-9]', '', self.name or '').upper()
        return (letters + 'XXX')[:3]

    def __str__(self):
        return f"{self.tenant.name} - {self.name}"
