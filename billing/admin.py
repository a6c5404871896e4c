from django.contrib import admin

from .models import Invoice, InvoiceSequence


@admin.register(InvoiceSequence)
class InvoiceSequenceAdmin(admin.ModelAdmin):
    list_display = ("location", "fiscal_year", "last_number", "updated_at")
    list_filter = ("fiscal_year",)
    readonly_fields = ("last_number", "updated_at")


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "order", "location", "fiscal_year", "issued_at")
    list_filter = ("fiscal_year", "location")
    search_fields = ("invoice_number",)
    readonly_fields = ("order", "location", "invoice_number", "fiscal_year", "sequence", "issued_at", "created_at")

    def has_delete_permission(self, request, obj=None):
        return False
