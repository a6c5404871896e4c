import os

import pytest
from rest_framework.test import APIClient

from orders.services.ledger import LineInput, create_order
from tests.factories import LocationFactory, MenuItemFactory, TenantFactory, UserFactory


os.environ.setdefault("ENVIRONMENT", "test")


@pytest.fixture
def api_client() -> APIClient:
    """Unauthenticated DRF APIClient.

    Use with endpoints that allow anonymous access, or combine with
    force_authenticate for backoffice flows.
    """
    return APIClient(enforce_csrf_checks=False)


@pytest.fixture
def user(db):
    """A persisted staff user (till operator)."""
    return UserFactory(username="testuser", is_staff=True)


@pytest.fixture
def customer_user(db):
    """A logged-in customer without staff rights."""
    return UserFactory(username="diner")


@pytest.fixture
def auth_api_client(api_client: APIClient, user):
    """APIClient authenticated as the provided user via force_authenticate."""
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def tenant(db):
    return TenantFactory()


@pytest.fixture
def other_tenant(db):
    return TenantFactory()


@pytest.fixture
def location(tenant):
    """An outlet in Maharashtra."""
    return LocationFactory(tenant=tenant, state_code="MH", invoice_prefix="BDK")


@pytest.fixture
def menu_item(tenant):
    """Paneer Tikka at 100.00 and 5% GST on the tenant's menu."""
    return MenuItemFactory(tenant=tenant, name="Paneer Tikka", price=10000, tax_rate_bps=500)


@pytest.fixture
def tenant_headers(tenant):
    return {"HTTP_X_TENANT_ID": str(tenant.pk)}


@pytest.fixture
def line():
    """Builds a LineInput; defaults to one 100.00 item at 5% GST."""
    def _line(name="Paneer Tikka", unit_price=10000, qty=1, tax_rate_bps=500, **kwargs):
        return LineInput(name=name, unit_price=unit_price, qty=qty, tax_rate_bps=tax_rate_bps, **kwargs)
    return _line


@pytest.fixture
def make_order(tenant, location, line):
    """Places an order through the ledger so the aggregates are real."""
    def _make(lines=None, customer_state="MH", **kwargs):
        return create_order(
            tenant,
            location,
            lines or [line()],
            customer_state=customer_state,
            **kwargs,
        )
    return _make
