import hashlib
import hmac
import json
from unittest import mock

import pytest

from billing.models import Invoice
from coupons.models import Coupon
from orders.models import Order
from orders.services import ledger
from payments.models import PaymentEvent
from tests.factories import CouponFactory, LocationFactory, MenuItemFactory


pytestmark = pytest.mark.django_db


def _order_payload(location, menu_item, **overrides):
    payload = {
        "locationId": location.pk,
        "customerState": "MH",
        "items": [{"menuItemId": str(menu_item.pk), "quantity": 1}],
    }
    payload.update(overrides)
    return payload


# ---------------------------
# Orders
# ---------------------------
def test_create_order(api_client, menu_item, location, tenant_headers):
    resp = api_client.post("/api/orders/", _order_payload(location, menu_item), format="json", **tenant_headers)

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "placed"
    assert (body["subtotal"], body["taxCgst"], body["taxSgst"], body["taxIgst"]) == (10000, 250, 250, 0)
    assert body["total"] == 10500
    assert body["items"][0]["taxRateBps"] == 500
    assert body["items"][0]["lineSubtotal"] == 10000


def test_create_order_with_coupon(api_client, menu_item, tenant, location, tenant_headers):
    CouponFactory(tenant=tenant, code="WELCOME10", discount_value=1000, max_discount_amount=500)
    resp = api_client.post("/api/orders/", _order_payload(location, menu_item, couponCode="welcome10"),
                           format="json", **tenant_headers)
    assert resp.status_code == 201
    assert resp.json()["discountAmount"] == 500
    assert resp.json()["couponCode"] == "WELCOME10"


def test_create_order_rejects_bad_lines(api_client, menu_item, location, tenant_headers):
    payload = _order_payload(location, menu_item)
    payload["items"][0]["quantity"] = 0
    resp = api_client.post("/api/orders/", payload, format="json", **tenant_headers)
    assert resp.status_code == 400
    assert resp.json()["error"] is True


def test_create_order_requires_tenant(api_client, menu_item, location):
    resp = api_client.post("/api/orders/", _order_payload(location, menu_item), format="json")
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


def test_create_order_at_foreign_location(api_client, menu_item, other_tenant, tenant_headers):
    foreign = LocationFactory(tenant=other_tenant)
    resp = api_client.post("/api/orders/", _order_payload(foreign, menu_item), format="json", **tenant_headers)
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"


def test_customer_prices_come_from_the_menu(api_client, menu_item, location, tenant_headers):
    payload = _order_payload(location, menu_item)
    payload["items"][0].update({"name": "Thali", "unitPrice": 1, "taxRateBps": 0})

    resp = api_client.post("/api/orders/", payload, format="json", **tenant_headers)

    assert resp.status_code == 201
    body = resp.json()
    assert body["total"] == 10500
    assert body["items"][0]["name"] == "Paneer Tikka"
    assert body["items"][0]["unitPrice"] == 10000
    assert body["items"][0]["taxRateBps"] == 500
    assert body["items"][0]["menuItemId"] == str(menu_item.pk)


def test_anonymous_open_price_line_is_rejected(api_client, location, tenant_headers):
    payload = {
        "locationId": location.pk,
        "items": [{"name": "Thali", "unitPrice": 1, "quantity": 1, "taxRateBps": 0}],
    }
    resp = api_client.post("/api/orders/", payload, format="json", **tenant_headers)
    assert resp.status_code == 400
    assert not Order.objects.exists()


def test_non_staff_login_cannot_key_in_prices(api_client, customer_user, location, tenant_headers):
    api_client.force_authenticate(user=customer_user)
    payload = {
        "locationId": location.pk,
        "items": [{"name": "Thali", "unitPrice": 1, "quantity": 1, "taxRateBps": 0}],
    }
    resp = api_client.post("/api/orders/", payload, format="json", **tenant_headers)
    assert resp.status_code == 400
    assert not Order.objects.exists()


def test_customer_cannot_claim_the_staff_channel(api_client, menu_item, location, tenant_headers):
    resp = api_client.post("/api/orders/", _order_payload(location, menu_item, channel="staff"),
                           format="json", **tenant_headers)
    assert resp.status_code == 201
    assert resp.json()["channel"] == "customer"


def test_staff_may_ring_up_open_price_lines(auth_api_client, location, tenant_headers):
    payload = {
        "locationId": location.pk,
        "channel": "staff",
        "customerState": "MH",
        "items": [{"name": "Chef special", "unitPrice": 20000, "quantity": 1, "taxRateBps": 500}],
    }
    resp = auth_api_client.post("/api/orders/", payload, format="json", **tenant_headers)
    assert resp.status_code == 201
    assert resp.json()["total"] == 21000
    assert resp.json()["channel"] == "staff"


@pytest.mark.parametrize("which", ["unavailable", "foreign", "garbage"])
def test_unknown_menu_items_are_404(api_client, location, other_tenant, tenant, tenant_headers, which):
    if which == "unavailable":
        ref = str(MenuItemFactory(tenant=tenant, is_available=False).pk)
    elif which == "foreign":
        ref = str(MenuItemFactory(tenant=other_tenant).pk)
    else:
        ref = "pt-1"
    payload = {"locationId": location.pk, "items": [{"menuItemId": ref, "quantity": 1}]}
    resp = api_client.post("/api/orders/", payload, format="json", **tenant_headers)
    assert resp.status_code == 404
    assert not Order.objects.exists()


def test_retrieve_order(auth_api_client, make_order, tenant_headers):
    order = make_order()
    resp = auth_api_client.get(f"/api/orders/{order.pk}/", **tenant_headers)
    assert resp.status_code == 200
    assert resp.json()["id"] == order.pk
    assert resp.json()["version"] == order.version


def test_order_of_another_tenant_is_forbidden(auth_api_client, make_order, other_tenant):
    order = make_order()
    resp = auth_api_client.get(f"/api/orders/{order.pk}/", HTTP_X_TENANT_ID=str(other_tenant.pk))
    assert resp.status_code == 403


def test_tenant_cookie_is_honoured(auth_api_client, make_order, tenant):
    order = make_order()
    auth_api_client.cookies["selected_tenant_id"] = str(tenant.pk)
    resp = auth_api_client.get(f"/api/orders/{order.pk}/")
    assert resp.status_code == 200


def test_missing_order_is_404(auth_api_client, tenant_headers):
    resp = auth_api_client.get("/api/orders/424242/", **tenant_headers)
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


def test_order_reads_require_login(api_client, make_order, tenant_headers):
    order = make_order()
    resp = api_client.get(f"/api/orders/{order.pk}/", **tenant_headers)
    assert resp.status_code in (401, 403)


def test_item_endpoints(auth_api_client, make_order, tenant_headers):
    order = make_order()
    item = order.items.get()

    resp = auth_api_client.patch(f"/api/orders/{order.pk}/items/{item.pk}/", {"quantity": 3},
                                 format="json", **tenant_headers)
    assert resp.status_code == 200
    assert resp.json()["subtotal"] == 30000
    assert resp.json()["taxCgst"] == 750

    resp = auth_api_client.post(f"/api/orders/{order.pk}/items/", {"items": [
        {"name": "Lassi", "unitPrice": 6000, "quantity": 1, "taxRateBps": 1200},
    ]}, format="json", **tenant_headers)
    assert resp.status_code == 200
    assert resp.json()["subtotal"] == 36000
    assert len(resp.json()["items"]) == 2

    resp = auth_api_client.delete(f"/api/orders/{order.pk}/items/{item.pk}/", **tenant_headers)
    assert resp.status_code == 200
    assert resp.json()["subtotal"] == 6000
    assert resp.json()["total"] == 6000 + 720


def test_item_edit_on_served_order_is_forbidden(auth_api_client, make_order, tenant_headers):
    order = make_order()
    for status in ("accepted", "in_kitchen", "ready", "served"):
        order = ledger.transition_status(order, status)
    item = order.items.get()
    resp = auth_api_client.patch(f"/api/orders/{order.pk}/items/{item.pk}/", {"quantity": 2},
                                 format="json", **tenant_headers)
    assert resp.status_code == 403


def test_status_endpoint(auth_api_client, make_order, tenant_headers, user):
    order = make_order()
    resp = auth_api_client.post(f"/api/orders/{order.pk}/status/", {"status": "accepted"},
                                format="json", **tenant_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"
    assert resp.json()["acceptedAt"] is not None

    resp = auth_api_client.post(f"/api/orders/{order.pk}/status/", {"status": "completed"},
                                format="json", **tenant_headers)
    assert resp.status_code == 400

    resp = auth_api_client.get(f"/api/orders/{order.pk}/history/", **tenant_headers)
    assert [h["newStatus"] for h in resp.json()] == ["placed", "accepted"]
    assert resp.json()[1]["changedBy"] == user.username


def test_conflict_is_rendered_as_409(auth_api_client, make_order, tenant_headers):
    order = make_order()
    item = order.items.get()
    with mock.patch("orders.services.ledger._conditional_update", return_value=0):
        resp = auth_api_client.patch(f"/api/orders/{order.pk}/items/{item.pk}/", {"quantity": 2},
                                     format="json", **tenant_headers)
    assert resp.status_code == 409
    body = resp.json()
    assert body["error"] is True
    assert body["code"] == "conflict"
    assert body["details"]["order_id"] == order.pk


# ---------------------------
# Coupons
# ---------------------------
def test_validate_coupon(api_client, tenant, tenant_headers):
    CouponFactory(tenant=tenant, code="FEST10", discount_value=1000, max_discount_amount=1500)
    resp = api_client.post("/api/coupons/validate/", {"code": "fest10", "orderAmount": 20000},
                           format="json", **tenant_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["valid"] is True
    assert body["coupon"]["discountAmount"] == 1500
    assert body["coupon"]["discountType"] == Coupon.TYPE_PERCENTAGE


def test_validate_coupon_rejection(api_client, tenant, tenant_headers):
    CouponFactory(tenant=tenant, code="BIG", min_order_amount=50000)
    resp = api_client.post("/api/coupons/validate/", {"code": "BIG", "orderAmount": 20000},
                           format="json", **tenant_headers)
    assert resp.status_code == 400
    assert resp.json() == {"valid": False, "error": "Order amount is below the coupon minimum",
                           "reason": "below_minimum"}


def test_validate_unknown_coupon(api_client, tenant_headers):
    resp = api_client.post("/api/coupons/validate/", {"code": "NOPE", "orderAmount": 20000},
                           format="json", **tenant_headers)
    assert resp.status_code == 404
    assert resp.json()["valid"] is False


def test_coupon_crud_keeps_used_count_read_only(auth_api_client, tenant, tenant_headers):
    resp = auth_api_client.post("/api/coupons/coupons/", {
        "code": "new20",
        "discount_type": "percentage",
        "discount_value": 2000,
        "usage_limit": 10,
        "used_count": 9,
    }, format="json", **tenant_headers)
    assert resp.status_code == 201
    coupon = Coupon.objects.get(tenant=tenant, code="NEW20")
    assert coupon.used_count == 0

    resp = auth_api_client.post("/api/coupons/coupons/", {
        "code": "NEW20", "discount_type": "percentage", "discount_value": 500,
    }, format="json", **tenant_headers)
    assert resp.status_code in (400, 409)

    resp = auth_api_client.get("/api/coupons/coupons/", **tenant_headers)
    assert resp.status_code == 200


def test_percentage_over_100_is_rejected(auth_api_client, tenant_headers):
    resp = auth_api_client.post("/api/coupons/coupons/", {
        "code": "TOOMUCH", "discount_type": "percentage", "discount_value": 10001,
    }, format="json", **tenant_headers)
    assert resp.status_code == 400


# ---------------------------
# Payments
# ---------------------------
def test_gateway_order_endpoint(api_client, make_order, tenant_headers):
    order = make_order()
    client = mock.Mock()
    client.create_order.return_value = {"id": "order_API1"}
    with mock.patch("payments.services.gateway_client", return_value=client):
        resp = api_client.post("/api/payments/gateway-order/", {"orderId": order.pk},
                               format="json", **tenant_headers)
    assert resp.status_code == 200
    assert resp.json() == {"gatewayOrderId": "order_API1", "key": "rzp_test_key",
                           "amount": 10500, "currency": "INR"}


def test_capture_endpoint(api_client, make_order, tenant_headers):
    order = ledger.set_gateway_order_id(make_order(), "order_API2")
    sig = hmac.new(b"rzp_test_secret", b"order_API2|pay_API2", hashlib.sha256).hexdigest()
    payload = {"orderId": order.pk, "gatewayOrderId": "order_API2", "gatewayPaymentId": "pay_API2",
               "signature": sig}

    first = api_client.post("/api/payments/capture/", payload, format="json", **tenant_headers)
    second = api_client.post("/api/payments/capture/", payload, format="json", **tenant_headers)

    assert first.status_code == 200
    assert first.json()["success"] is True
    assert first.json()["alreadyApplied"] is False
    assert first.json()["status"] == "accepted"
    assert second.json()["alreadyApplied"] is True


def test_capture_endpoint_bad_signature(api_client, make_order, tenant_headers):
    order = ledger.set_gateway_order_id(make_order(), "order_API3")
    resp = api_client.post("/api/payments/capture/", {
        "orderId": order.pk, "gatewayOrderId": "order_API3", "gatewayPaymentId": "pay_X", "signature": "bad",
    }, format="json", **tenant_headers)
    assert resp.status_code == 401
    assert resp.json()["code"] == "authentication_failed"


def test_webhook_endpoint(client, make_order):
    order = ledger.set_gateway_order_id(make_order(), "order_API4")
    body = json.dumps({
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_API4", "order_id": "order_API4", "amount": order.total}}},
    }).encode()
    sig = hmac.new(b"rzp_webhook_secret", body, hashlib.sha256).hexdigest()

    bad = client.post("/api/payments/webhook/", body, content_type="application/json",
                      HTTP_X_RAZORPAY_SIGNATURE="bad")
    ok = client.post("/api/payments/webhook/", body, content_type="application/json",
                     HTTP_X_RAZORPAY_SIGNATURE=sig, HTTP_X_RAZORPAY_EVENT_ID="evt_API4")
    again = client.post("/api/payments/webhook/", body, content_type="application/json",
                        HTTP_X_RAZORPAY_SIGNATURE=sig, HTTP_X_RAZORPAY_EVENT_ID="evt_API4")

    assert bad.status_code == 400
    assert ok.status_code == 200
    assert again.status_code == 200
    order.refresh_from_db()
    assert order.status == Order.STATUS_ACCEPTED
    assert PaymentEvent.objects.filter(gateway_payment_id="pay_API4").count() == 1


def test_webhook_rejects_get(client):
    assert client.get("/api/payments/webhook/").status_code == 405


# ---------------------------
# Billing
# ---------------------------
def test_invoice_endpoint(auth_api_client, make_order, tenant_headers):
    order = make_order()
    for status in ("accepted", "in_kitchen", "ready", "served", "completed"):
        order = ledger.transition_status(order, status)

    resp = auth_api_client.get(f"/api/billing/orders/{order.pk}/invoice/", **tenant_headers)
    again = auth_api_client.get(f"/api/billing/orders/{order.pk}/invoice/", **tenant_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["invoice_number"] == Invoice.objects.get(order=order).invoice_number
    assert body["total"] == 10500
    assert body["lines"][0]["tax_rate_bps"] == 500
    assert again.json()["invoice_number"] == body["invoice_number"]


def test_invoice_for_open_order_is_forbidden(auth_api_client, make_order, tenant_headers):
    order = make_order()
    resp = auth_api_client.get(f"/api/billing/orders/{order.pk}/invoice/", **tenant_headers)
    assert resp.status_code == 403


def test_request_id_is_echoed(api_client, tenant_headers):
    resp = api_client.post("/api/coupons/validate/", {"code": "NOPE", "orderAmount": 1},
                           format="json", HTTP_X_REQUEST_ID="abc-123", **tenant_headers)
    assert resp["X-Request-ID"] == "abc-123"
