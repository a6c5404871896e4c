from django.contrib import admin

from .models import Location, Tenant


class LocationInline(admin.TabularInline):
    model = Location
    extra = 0
    fields = ('name', 'state_code', 'gstin', 'invoice_prefix', 'is_active')


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ('name', 'slug', 'is_active', 'created_at')
    list_filter = ('is_active',)
    search_fields = ('name', 'slug')
    prepopulated_fields = {'slug': ('name',)}
    inlines = [LocationInline]


@admin.register(Location)
class LocationAdmin(admin.ModelAdmin):
    list_display = ('name', 'tenant', 'state_code', 'gstin', 'document_prefix', 'is_active')
    list_filter = ('tenant', 'state_code', 'is_active')
    search_fields = ('name', 'gstin', 'tenant__name')
    readonly_fields = ('created_at', 'updated_at')

    fieldsets = (
        ('Basic Information', {
            'fields': ('tenant', 'name', 'address', 'is_active')
        }),
        ('Tax & Invoicing', {
            'fields': ('state_code', 'gstin', 'invoice_prefix')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )
