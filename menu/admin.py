from django.contrib import admin

from .models import MenuItem


@admin.register(MenuItem)
class MenuItemAdmin(admin.ModelAdmin):
    list_display = ('name', 'tenant', 'price', 'tax_rate_bps', 'is_available', 'updated_at')
    list_filter = ('tenant', 'is_available')
    search_fields = ('name',)
    list_editable = ('is_available',)
