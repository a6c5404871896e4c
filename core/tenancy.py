from __future__ import annotations

from django.conf import settings

from .exceptions import ForbiddenError, NotFoundError, ValidationError
from .models import Tenant


def tenant_id_from_request(request) -> str | None:
    """Tenant id chosen upstream, from the X-Tenant-ID header or the tenant cookie."""
    raw = request.META.get(settings.TENANT_HEADER) or request.COOKIES.get(settings.TENANT_COOKIE_NAME)
    raw = (raw or "").strip()
    return raw or None


def resolve_tenant(request) -> Tenant:
    raw = tenant_id_from_request(request)
    if raw is None:
        raise ValidationError("Tenant not specified.", field="tenant")
    try:
        tenant_id = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Tenant id must be an integer.", field="tenant")
    tenant = Tenant.objects.filter(pk=tenant_id, is_active=True).first()
    if tenant is None:
        raise NotFoundError("Tenant not found.", tenant_id=tenant_id)
    return tenant


def ensure_tenant(obj, tenant: Tenant, label: str = "resource") -> None:
    if obj.tenant_id != tenant.pk:
        raise ForbiddenError(f"This {label} belongs to another tenant.")


class TenantScopedMixin:
    """DRF view mixin that caches the caller's tenant on the request."""

    def get_tenant(self) -> Tenant:
        tenant = getattr(self.request, "_ordering_tenant", None)
        if tenant is None:
            tenant = resolve_tenant(self.request)
            self.request._ordering_tenant = tenant
        return tenant
