from unittest import mock

import pytest

from core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from coupons.models import Coupon, CouponRedemption
from coupons.services import CouponLimitReached, CouponRejected
from orders.models import Order, OrderItem
from orders.services import ledger
from tests.factories import CouponFactory, LocationFactory


pytestmark = pytest.mark.django_db


def _items_subtotal(order):
    return sum(i.unit_price * i.qty for i in OrderItem.objects.filter(order_id=order.pk))


def _assert_consistent(order):
    order.refresh_from_db()
    assert order.subtotal == _items_subtotal(order)
    assert order.total == order.subtotal + order.tax_cgst + order.tax_sgst + order.tax_igst - order.discount_amount
    ledger.verify_aggregates(order)


# ---------------------------
# Creation
# ---------------------------
def test_intra_state_order_totals(make_order):
    order = make_order(customer_state="MH")
    assert order.subtotal == 10000
    assert (order.tax_cgst, order.tax_sgst, order.tax_igst) == (250, 250, 0)
    assert order.total == 10500
    assert order.status == Order.STATUS_PLACED
    assert order.placed_at is not None
    _assert_consistent(order)


def test_inter_state_order_totals(make_order):
    order = make_order(customer_state="KA")
    assert (order.tax_cgst, order.tax_sgst, order.tax_igst) == (0, 0, 500)
    assert order.total == 10500


def test_items_snapshot_price_name_and_rate(make_order, line):
    order = make_order(lines=[line(name="Masala Dosa", unit_price=12000, qty=2, tax_rate_bps=1200,
                                   menu_item_ref="dosa-1", options=[{"name": "extra chutney"}])])
    item = order.items.get()
    assert item.name_snapshot == "Masala Dosa"
    assert item.unit_price == 12000
    assert item.qty == 2
    assert item.tax_rate_bps == 1200
    assert item.menu_item_ref == "dosa-1"
    assert item.options_snapshot == [{"name": "extra chutney"}]


def test_coupon_discount_applies_to_pre_discount_total(make_order, tenant):
    coupon = CouponFactory(tenant=tenant, discount_value=1000, usage_limit=10)
    order = make_order(coupon=coupon)
    # 10% of 10500
    assert order.discount_amount == 1050
    assert order.total == 9450
    coupon.refresh_from_db()
    assert coupon.used_count == 1
    assert CouponRedemption.objects.get(order=order).discount_amount == 1050
    _assert_consistent(order)


def test_rejected_coupon_leaves_no_order(make_order, tenant):
    coupon = CouponFactory(tenant=tenant, min_order_amount=50000)
    with pytest.raises(CouponRejected):
        make_order(coupon=coupon)
    assert Order.objects.count() == 0


def test_exhausted_coupon_leaves_no_order(make_order, tenant):
    coupon = CouponFactory(tenant=tenant, usage_limit=1)
    make_order(coupon=coupon)
    stale = Coupon.objects.get(pk=coupon.pk)
    stale.used_count = 0  # a caller that validated before the last use was taken
    with pytest.raises(CouponLimitReached):
        make_order(coupon=stale)
    assert Order.objects.count() == 1


def test_staff_orders_may_use_backoffice_coupons(make_order, tenant):
    coupon = CouponFactory(tenant=tenant, active_for_customer_end=False)
    with pytest.raises(CouponRejected):
        make_order(coupon=coupon)
    order = make_order(coupon=coupon, channel=Order.CHANNEL_STAFF)
    assert order.discount_amount == 1050


def test_order_needs_items(make_order, tenant, location):
    with pytest.raises(ValidationError):
        ledger.create_order(tenant, location, [])


@pytest.mark.parametrize(
    "field,value",
    [("unit_price", -1), ("qty", 0), ("tax_rate_bps", 10001), ("unit_price", 10.5), ("name", "  ")],
)
def test_invalid_lines_are_rejected(make_order, line, field, value):
    with pytest.raises(ValidationError):
        make_order(lines=[line(**{field: value})])


def test_location_of_another_tenant_is_forbidden(tenant, other_tenant, line):
    foreign = LocationFactory(tenant=other_tenant)
    with pytest.raises(ForbiddenError):
        ledger.create_order(tenant, foreign, [line()])


# ---------------------------
# Item deltas
# ---------------------------
def test_quantity_change_moves_aggregates_by_delta(make_order, line):
    order = make_order(lines=[line(unit_price=10000, qty=2, tax_rate_bps=500)])
    before = Order.objects.get(pk=order.pk)
    item = order.items.get()

    after = ledger.apply_item_quantity_change(order, item, 5)

    assert after.subtotal - before.subtotal == 30000
    assert after.total_tax - before.total_tax == 1500
    assert after.tax_cgst - before.tax_cgst == 750
    assert after.tax_sgst - before.tax_sgst == 750
    assert after.tax_igst == before.tax_igst == 0
    assert after.version == before.version + 1
    _assert_consistent(after)


def test_unchanged_quantity_is_a_no_op(make_order):
    order = make_order()
    item = order.items.get()
    after = ledger.apply_item_quantity_change(order, item, item.qty)
    assert after.version == order.version


@pytest.mark.parametrize("qty", [0, -2, 1.5, True])
def test_quantity_must_be_positive_integer(make_order, qty):
    order = make_order()
    with pytest.raises(ValidationError):
        ledger.apply_item_quantity_change(order, order.items.get(), qty)


def test_add_items_adds_their_contribution(make_order, line):
    order = make_order()
    after = ledger.add_items(order, [line(name="Lassi", unit_price=6000, qty=2, tax_rate_bps=1200)])
    assert after.subtotal == 10000 + 12000
    assert after.total_tax == 500 + 1440
    assert after.items.count() == 2
    _assert_consistent(after)


def test_remove_item_subtracts_its_contribution(make_order, line):
    order = make_order(lines=[line(), line(name="Naan", unit_price=3000, qty=3, tax_rate_bps=500)])
    naan = order.items.get(name_snapshot="Naan")

    after = ledger.remove_item(order, naan)

    assert after.subtotal == 10000
    assert (after.tax_cgst, after.tax_sgst, after.total) == (250, 250, 10500)
    assert not OrderItem.objects.filter(pk=naan.pk).exists()
    _assert_consistent(after)


def test_odd_tax_deltas_stay_consistent(make_order, line):
    order = make_order(lines=[line(unit_price=10010, qty=1, tax_rate_bps=500)])
    item = order.items.get()
    for qty in (3, 2, 7, 1):
        order = ledger.apply_item_quantity_change(order, item, qty)
        _assert_consistent(order)
        expected = ledger.recompute_aggregates(order)[1]
        assert (order.tax_cgst, order.tax_sgst) == (expected.cgst, expected.sgst)


def test_unknown_item_is_not_found(make_order):
    order = make_order()
    with pytest.raises(NotFoundError):
        ledger.remove_item(order, 999999)


def test_item_of_another_order_is_not_found(make_order):
    order = make_order()
    other = make_order()
    with pytest.raises(NotFoundError):
        ledger.apply_item_quantity_change(order, other.items.get(), 3)


@pytest.mark.parametrize("status", [Order.STATUS_SERVED, Order.STATUS_COMPLETED, Order.STATUS_CANCELED])
def test_items_are_frozen_outside_editable_states(make_order, line, status):
    order = make_order()
    path = {
        Order.STATUS_SERVED: [Order.STATUS_ACCEPTED, Order.STATUS_IN_KITCHEN, Order.STATUS_READY, Order.STATUS_SERVED],
        Order.STATUS_COMPLETED: [Order.STATUS_ACCEPTED, Order.STATUS_IN_KITCHEN, Order.STATUS_READY,
                                 Order.STATUS_SERVED, Order.STATUS_COMPLETED],
        Order.STATUS_CANCELED: [Order.STATUS_CANCELED],
    }[status]
    for step in path:
        order = ledger.transition_status(order, step)
    item = order.items.get()

    with pytest.raises(ForbiddenError):
        ledger.apply_item_quantity_change(order, item, 4)
    with pytest.raises(ForbiddenError):
        ledger.remove_item(order, item)
    with pytest.raises(ForbiddenError):
        ledger.add_items(order, [line()])

    order.refresh_from_db()
    assert order.subtotal == 10000
    assert order.items.count() == 1


def test_items_editable_while_in_kitchen(make_order):
    order = make_order()
    for step in (Order.STATUS_ACCEPTED, Order.STATUS_IN_KITCHEN, Order.STATUS_READY):
        order = ledger.transition_status(order, step)
    order = ledger.apply_item_quantity_change(order, order.items.get(), 2)
    assert order.subtotal == 20000


# ---------------------------
# Invariants
# ---------------------------
def test_negative_aggregate_raises_and_leaves_state_intact(make_order):
    order = make_order()
    item = order.items.get()
    # corrupt the cached aggregates so removing the item would go below zero
    Order.objects.filter(pk=order.pk).update(subtotal=0, tax_cgst=0, tax_sgst=0, tax_igst=0, total=0)

    with pytest.raises(InvariantViolation):
        ledger.remove_item(order, item)

    assert OrderItem.objects.filter(pk=item.pk).exists()
    order.refresh_from_db()
    assert order.subtotal == 0


def test_one_paisa_below_zero_is_not_clamped(make_order, line):
    order = make_order(lines=[line(), line(name="Naan", unit_price=3000)])
    naan = order.items.get(name_snapshot="Naan")
    # cached CGST short by one paisa against the items
    Order.objects.filter(pk=order.pk).update(tax_cgst=324, total=13649)
    paneer = order.items.get(name_snapshot="Paneer Tikka")
    ledger.remove_item(order, naan)

    with pytest.raises(InvariantViolation):
        ledger.remove_item(order, paneer)

    order.refresh_from_db()
    assert order.tax_cgst == 249
    assert order.items.count() == 1


def test_negative_total_is_not_clamped(make_order, tenant, line):
    coupon = CouponFactory(tenant=tenant, discount_type=Coupon.TYPE_FIXED, discount_value=10000)
    order = make_order(lines=[line(), line(name="Chai", unit_price=2000)], coupon=coupon)
    assert order.discount_amount == 10000
    big = order.items.get(name_snapshot="Paneer Tikka")

    with pytest.raises(InvariantViolation):
        ledger.remove_item(order, big)

    order.refresh_from_db()
    assert order.items.count() == 2
    assert order.total == 12600 - 10000


def test_verify_aggregates_detects_drift(make_order):
    order = make_order()
    Order.objects.filter(pk=order.pk).update(subtotal=9000, total=9500)
    with pytest.raises(InvariantViolation):
        ledger.verify_aggregates(order)


# ---------------------------
# Optimistic concurrency
# ---------------------------
def test_lost_version_race_is_retried(make_order):
    order = make_order()
    item = order.items.get()
    real = ledger._conditional_update
    calls = {"n": 0}

    def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            # another writer got there first
            return 0
        return real(*args, **kwargs)

    with mock.patch("orders.services.ledger._conditional_update", side_effect=flaky):
        after = ledger.apply_item_quantity_change(order, item, 3)

    assert calls["n"] == 2
    assert after.subtotal == 30000
    assert after.version == order.version + 1
    _assert_consistent(after)


def test_persistent_conflict_raises_and_rolls_back(make_order, settings):
    settings.ORDER_WRITE_MAX_RETRIES = 3
    order = make_order()
    item = order.items.get()

    with mock.patch("orders.services.ledger._conditional_update", return_value=0) as update:
        with pytest.raises(ConflictError):
            ledger.apply_item_quantity_change(order, item, 4)

    assert update.call_count == 3
    item.refresh_from_db()
    assert item.qty == 1
    order.refresh_from_db()
    assert order.subtotal == 10000


def test_edits_from_stale_copies_compose(make_order, line):
    order = make_order(lines=[line(), line(name="Naan", unit_price=3000)])
    paneer = order.items.get(name_snapshot="Paneer Tikka")
    naan = order.items.get(name_snapshot="Naan")

    stale_a = Order.objects.get(pk=order.pk)
    stale_b = Order.objects.get(pk=order.pk)
    ledger.apply_item_quantity_change(stale_a, paneer, 2)
    after = ledger.apply_item_quantity_change(stale_b, naan, 4)

    assert after.subtotal == 20000 + 12000
    assert after.version == order.version + 2
    _assert_consistent(after)


# ---------------------------
# Coupon minimum after edits
# ---------------------------
@pytest.fixture
def minimum_order(make_order, tenant, line):
    coupon = CouponFactory(tenant=tenant, discount_type=Coupon.TYPE_FIXED, discount_value=1000,
                           min_order_amount=20000)
    return make_order(lines=[line(), line(name="Dal Makhani")], coupon=coupon)


def test_removal_below_coupon_minimum_is_rejected(minimum_order):
    order = minimum_order
    assert order.total == 21000 - 1000
    dal = order.items.get(name_snapshot="Dal Makhani")

    with pytest.raises(CouponRejected) as exc:
        ledger.remove_item(order, dal)

    assert exc.value.reason == "below_minimum"
    order.refresh_from_db()
    assert order.items.count() == 2
    assert (order.subtotal, order.discount_amount, order.total) == (20000, 1000, 20000)


def test_quantity_drop_below_coupon_minimum_is_rejected(minimum_order, line):
    order = ledger.add_items(minimum_order, [line(name="Roti", unit_price=2000, qty=5)])
    order = ledger.remove_item(order, order.items.get(name_snapshot="Dal Makhani"))
    assert order.subtotal + order.total_tax == 21000
    roti = order.items.get(name_snapshot="Roti")

    with pytest.raises(CouponRejected):
        ledger.apply_item_quantity_change(order, roti, 4)

    roti.refresh_from_db()
    assert roti.qty == 5
    _assert_consistent(order)


def test_edits_keep_discount_while_minimum_holds(minimum_order, line):
    order = ledger.add_items(minimum_order, [line(name="Lassi", unit_price=6000)])
    assert order.discount_amount == 1000
    assert order.total == 27300 - 1000
    _assert_consistent(order)
