"""
Order aggregate ledger.

Owns the cached money columns on ``Order`` (subtotal, CGST/SGST/IGST,
discount, total). Item changes never recompute the order from scratch: the
old and new contribution of the touched line are diffed and the delta is
merged into the stored aggregates.

Every write is an optimistic, version-guarded ``UPDATE``::

    UPDATE orders_order SET ..., version = version + 1
     WHERE id = %s AND version = %s

Zero rows means another writer got there first; the attempt's transaction is
rolled back and the whole read-compute-write cycle runs again, up to
``ORDER_WRITE_MAX_RETRIES`` times, before ``ConflictError`` is raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core import money
from core.alerts import alert_invariant_violation
from core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from core.gst import ZERO, TaxBreakdown, compute_item_tax, normalize_state
from coupons.services import CHANNEL_CUSTOMER, evaluate_coupon, recheck_minimum, redeem_coupon

from ..models import MAX_TAX_RATE_BPS, Order, OrderItem, OrderStatusHistory
from ..signals import order_status_changed

logger = logging.getLogger(__name__)

T = TypeVar('T')

AGGREGATE_FIELDS = ('subtotal', 'tax_cgst', 'tax_sgst', 'tax_igst')


@dataclass
class LineInput:
    """A requested order line, prices in paise and tax in basis points."""

    name: str
    unit_price: int
    qty: int
    tax_rate_bps: int
    menu_item_ref: str = ''
    options: list = field(default_factory=list)

    def validate(self) -> None:
        if not (self.name or '').strip():
            raise ValidationError('Item name is required.', field='name')
        for attr in ('unit_price', 'qty', 'tax_rate_bps'):
            value = getattr(self, attr)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f'{attr} must be an integer.', field=attr)
        if self.unit_price < 0:
            raise ValidationError('unit_price cannot be negative.', field='unit_price')
        if self.qty < 1:
            raise ValidationError('qty must be at least 1.', field='qty')
        if not 0 <= self.tax_rate_bps <= MAX_TAX_RATE_BPS:
            raise ValidationError('tax_rate_bps must be between 0 and 10000.', field='tax_rate_bps')
        money.ensure_amount(self.unit_price, 'unit_price')


class _StaleVersion(Exception):
    """The order row changed between our read and our conditional write."""


# ---------------------------
# Helpers
# ---------------------------
def _actor(by_user) -> str:
    if by_user is None:
        return ''
    if isinstance(by_user, str):
        return by_user
    return getattr(by_user, 'get_username', lambda: str(by_user))()


def _line_contribution(unit_price: int, qty: int, tax_rate_bps: int,
                       location_state, customer_state) -> Tuple[int, TaxBreakdown]:
    subtotal = money.multiply_qty(unit_price, qty)
    return subtotal, compute_item_tax(subtotal, tax_rate_bps, location_state, customer_state)


def _next_aggregates(order: Order, d_subtotal: int, d_tax: TaxBreakdown) -> dict:
    """
    Stored aggregates plus a delta, with the total rebuilt from its parts.

    Line contributions are exact, so any component ending below zero, or a
    negative total, is an invariant violation and aborts the write. A redeemed
    coupon's minimum order amount is checked again against the new
    pre-discount total.
    """
    values = {
        'subtotal': money.add(order.subtotal, d_subtotal),
        'tax_cgst': money.add(order.tax_cgst, d_tax.cgst),
        'tax_sgst': money.add(order.tax_sgst, d_tax.sgst),
        'tax_igst': money.add(order.tax_igst, d_tax.igst),
    }
    for name in AGGREGATE_FIELDS:
        value = values[name]
        if value < 0:
            raise alert_invariant_violation(
                f'{name} would become negative', order_id=order.pk, field=name, value=value,
            )

    pre_discount = money.add(values['subtotal'], values['tax_cgst'], values['tax_sgst'], values['tax_igst'])
    if order.coupon_id is not None:
        recheck_minimum(order.coupon, pre_discount)

    total = money.subtract(pre_discount, order.discount_amount)
    if total < 0:
        raise alert_invariant_violation(
            'order total would become negative', order_id=order.pk, field='total', value=total,
        )
    values['total'] = total
    return values


def _conditional_update(order_id: int, expected_version: int, values: dict, **conditions) -> int:
    return (
        Order.objects
        .filter(pk=order_id, version=expected_version, **conditions)
        .update(version=F('version') + 1, updated_at=timezone.now(), **values)
    )


def _commit(order: Order, values: dict, **conditions) -> None:
    if _conditional_update(order.pk, order.version, values, **conditions) != 1:
        raise _StaleVersion()


def _run_guarded(order_id: int, action: str, operation: Callable[[Order], T]) -> T:
    """
    Run ``operation`` against a fresh read of the order inside its own transaction,
    retrying from scratch whenever the version guard trips.
    """
    retries = max(1, int(getattr(settings, 'ORDER_WRITE_MAX_RETRIES', 5)))
    for attempt in range(1, retries + 1):
        try:
            with transaction.atomic():
                current = Order.objects.select_related('location', 'coupon').filter(pk=order_id).first()
                if current is None:
                    raise NotFoundError('Order not found.', order_id=order_id)
                return operation(current)
        except _StaleVersion:
            logger.info("Order %s changed during %s (attempt %s/%s), retrying",
                        order_id, action, attempt, retries)

    logger.warning("Order %s: %s gave up after %s attempts", order_id, action, retries)
    raise ConflictError('Order was modified concurrently. Retry the request.',
                        order_id=order_id, action=action)


def _ensure_editable(order: Order) -> None:
    if not order.is_editable:
        raise ForbiddenError(
            f"Items cannot be changed while the order is {order.status}.",
            order_id=order.pk, status=order.status,
        )


def _order_id(order) -> int:
    return order.pk if isinstance(order, Order) else int(order)


def _item_id(item) -> int:
    return item.pk if isinstance(item, OrderItem) else int(item)


def _load_item(order: Order, item_id: int) -> OrderItem:
    item = OrderItem.objects.filter(pk=item_id, order_id=order.pk).first()
    if item is None:
        raise NotFoundError('Order item not found.', order_id=order.pk, item_id=item_id)
    return item


# ---------------------------
# Creation
# ---------------------------
def create_order(tenant, location, lines: Iterable[LineInput], coupon=None,
                 customer_state: Optional[str] = None, channel: str = Order.CHANNEL_CUSTOMER,
                 customer: Optional[dict] = None, now=None) -> Order:
    """
    Price and persist a new order in ``placed``.

    The coupon is validated against the pre-discount total (subtotal plus tax)
    and its use is counted in the same transaction, so losing the race for the
    last use leaves no order behind.
    """
    lines = list(lines)
    if not lines:
        raise ValidationError('An order needs at least one item.', field='items')
    for line in lines:
        line.validate()
    if location.tenant_id != tenant.pk:
        raise ForbiddenError('Location belongs to another tenant.')
    if coupon is not None and coupon.tenant_id != tenant.pk:
        raise ForbiddenError('Coupon belongs to another tenant.')

    now = now or timezone.now()
    location_state = normalize_state(location.state_code) or normalize_state(settings.DEFAULT_LOCATION_STATE)
    customer_state = normalize_state(customer_state)
    customer = customer or {}

    subtotal = 0
    tax = ZERO
    for line in lines:
        line_subtotal, line_tax = _line_contribution(
            line.unit_price, line.qty, line.tax_rate_bps, location_state, customer_state,
        )
        subtotal = money.add(subtotal, line_subtotal)
        tax = tax + line_tax

    pre_discount = money.add(subtotal, tax.total_tax)
    discount = 0
    if coupon is not None:
        coupon_channel = CHANNEL_CUSTOMER if channel == Order.CHANNEL_CUSTOMER else None
        discount = evaluate_coupon(coupon, pre_discount, now=now, channel=coupon_channel)

    total = money.subtract(pre_discount, discount)
    if total < 0:
        raise alert_invariant_violation('order total would become negative', field='total', value=total)

    with transaction.atomic():
        order = Order.objects.create(
            tenant=tenant,
            location=location,
            channel=channel,
            location_state=location_state,
            customer_state=customer_state,
            customer_name=customer.get('name', ''),
            customer_email=customer.get('email', ''),
            customer_phone=customer.get('phone', ''),
            subtotal=subtotal,
            tax_cgst=tax.cgst,
            tax_sgst=tax.sgst,
            tax_igst=tax.igst,
            discount_amount=discount,
            total=total,
            status=Order.STATUS_PLACED,
            coupon=coupon,
            placed_at=now,
        )
        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                menu_item_ref=line.menu_item_ref or '',
                name_snapshot=line.name.strip(),
                unit_price=line.unit_price,
                qty=line.qty,
                tax_rate_bps=line.tax_rate_bps,
                options_snapshot=line.options or [],
            )
            for line in lines
        ])
        OrderStatusHistory.objects.create(
            order=order, previous_status=None, new_status=Order.STATUS_PLACED, changed_by=channel,
        )
        if coupon is not None:
            redeem_coupon(coupon, order, discount)

    logger.info("Order %s placed at location %s: subtotal=%s tax=%s discount=%s total=%s",
                order.pk, location.pk, subtotal, tax.total_tax, discount, total)
    return order


# ---------------------------
# Item mutations
# ---------------------------
def add_items(order, lines: Iterable[LineInput]) -> Order:
    """Append lines to an open order; the delta is the new lines' contribution."""
    lines = list(lines)
    if not lines:
        raise ValidationError('No items to add.', field='items')
    for line in lines:
        line.validate()
    order_id = _order_id(order)

    def operation(current: Order):
        _ensure_editable(current)
        d_subtotal = 0
        d_tax = ZERO
        for line in lines:
            line_subtotal, line_tax = _line_contribution(
                line.unit_price, line.qty, line.tax_rate_bps, current.location_state, current.customer_state,
            )
            d_subtotal = money.add(d_subtotal, line_subtotal)
            d_tax = d_tax + line_tax
        values = _next_aggregates(current, d_subtotal, d_tax)
        OrderItem.objects.bulk_create([
            OrderItem(
                order_id=current.pk,
                menu_item_ref=line.menu_item_ref or '',
                name_snapshot=line.name.strip(),
                unit_price=line.unit_price,
                qty=line.qty,
                tax_rate_bps=line.tax_rate_bps,
                options_snapshot=line.options or [],
            )
            for line in lines
        ])
        _commit(current, values)

    _run_guarded(order_id, 'add_items', operation)
    logger.info("Order %s: added %s item(s)", order_id, len(lines))
    return Order.objects.get(pk=order_id)


def apply_item_quantity_change(order, item, new_qty: int) -> Order:
    """
    Change one line's quantity and move the aggregates by exactly the difference.
    """
    if isinstance(new_qty, bool) or not isinstance(new_qty, int):
        raise ValidationError('quantity must be an integer.', field='quantity')
    if new_qty < 1:
        raise ValidationError('quantity must be at least 1; remove the item instead.', field='quantity')
    order_id = _order_id(order)
    item_id = _item_id(item)

    def operation(current: Order):
        _ensure_editable(current)
        line = _load_item(current, item_id)
        if line.qty == new_qty:
            return
        old_subtotal, old_tax = _line_contribution(
            line.unit_price, line.qty, line.tax_rate_bps, current.location_state, current.customer_state,
        )
        new_subtotal, new_tax = _line_contribution(
            line.unit_price, new_qty, line.tax_rate_bps, current.location_state, current.customer_state,
        )
        values = _next_aggregates(current, money.subtract(new_subtotal, old_subtotal), new_tax - old_tax)
        OrderItem.objects.filter(pk=line.pk).update(qty=new_qty, updated_at=timezone.now())
        _commit(current, values)
        logger.info("Order %s item %s qty %s -> %s", current.pk, line.pk, line.qty, new_qty)

    _run_guarded(order_id, 'apply_item_quantity_change', operation)
    return Order.objects.get(pk=order_id)


def remove_item(order, item) -> Order:
    """Delete a line; the delta is its negated contribution."""
    order_id = _order_id(order)
    item_id = _item_id(item)

    def operation(current: Order):
        _ensure_editable(current)
        line = _load_item(current, item_id)
        line_subtotal, line_tax = _line_contribution(
            line.unit_price, line.qty, line.tax_rate_bps, current.location_state, current.customer_state,
        )
        values = _next_aggregates(current, -line_subtotal, -line_tax)
        line.delete()
        _commit(current, values)
        logger.info("Order %s item %s removed", current.pk, item_id)

    _run_guarded(order_id, 'remove_item', operation)
    return Order.objects.get(pk=order_id)


# ---------------------------
# Status
# ---------------------------
def transition_status(order, new_status: str, by_user=None, note: str = '') -> Order:
    """
    Move the order along its lifecycle, stamping the matching ``*_at`` field.
    """
    new_status = (new_status or '').strip().lower()
    if new_status not in Order.STATUS_TIMESTAMP_FIELDS:
        raise ValidationError(f"Unknown status '{new_status}'.", field='status')
    order_id = _order_id(order)

    def operation(current: Order):
        old_status = current.status
        if not current.can_transition_to(new_status):
            raise ValidationError(
                f"Invalid transition from {old_status} to {new_status}",
                order_id=current.pk, current=old_status, requested=new_status,
            )
        _commit(current, {
            'status': new_status,
            Order.STATUS_TIMESTAMP_FIELDS[new_status]: timezone.now(),
        })
        OrderStatusHistory.objects.create(
            order_id=current.pk, previous_status=old_status, new_status=new_status,
            changed_by=_actor(by_user), note=note,
        )
        return old_status

    old_status = _run_guarded(order_id, 'transition_status', operation)
    updated = Order.objects.get(pk=order_id)
    logger.info("Order %s: %s -> %s", order_id, old_status, new_status)
    order_status_changed.send(sender=Order, order=updated, old=old_status, new=new_status, by_user=by_user)
    return updated


def accept_for_payment(order, gateway_payment_id: str, accepted_at=None) -> bool:
    """
    Move a pre-accept order to ``accepted`` on behalf of a captured payment.

    Returns False, writing nothing, when the order is already past the
    pre-accept states.
    """
    order_id = _order_id(order)
    accepted_at = accepted_at or timezone.now()

    def operation(current: Order) -> Optional[str]:
        if current.status not in Order.PRE_ACCEPT_STATUSES:
            if current.gateway_payment_id and current.gateway_payment_id != gateway_payment_id:
                logger.warning("Order %s already paid by %s; ignoring payment %s",
                               current.pk, current.gateway_payment_id, gateway_payment_id)
            return None
        _commit(current, {
            'status': Order.STATUS_ACCEPTED,
            'accepted_at': accepted_at,
            'gateway_payment_id': gateway_payment_id,
        }, status__in=list(Order.PRE_ACCEPT_STATUSES))
        OrderStatusHistory.objects.create(
            order_id=current.pk, previous_status=current.status, new_status=Order.STATUS_ACCEPTED,
            changed_by='payment', note=f'payment {gateway_payment_id}',
        )
        return current.status

    old_status = _run_guarded(order_id, 'accept_for_payment', operation)
    if old_status is None:
        return False
    updated = Order.objects.get(pk=order_id)
    order_status_changed.send(sender=Order, order=updated, old=old_status, new=Order.STATUS_ACCEPTED, by_user=None)
    return True


def set_gateway_order_id(order, gateway_order_id: str) -> Order:
    order_id = _order_id(order)

    def operation(current: Order):
        if current.gateway_order_id == gateway_order_id:
            return
        _commit(current, {'gateway_order_id': gateway_order_id})

    _run_guarded(order_id, 'set_gateway_order_id', operation)
    return Order.objects.get(pk=order_id)


# ---------------------------
# Consistency
# ---------------------------
def recompute_aggregates(order: Order) -> Tuple[int, TaxBreakdown]:
    """Full recompute from the items; for audits only, writes nothing."""
    subtotal = 0
    tax = ZERO
    for item in order.items.all():
        line_subtotal, line_tax = _line_contribution(
            item.unit_price, item.qty, item.tax_rate_bps, order.location_state, order.customer_state,
        )
        subtotal = money.add(subtotal, line_subtotal)
        tax = tax + line_tax
    return subtotal, tax


def verify_aggregates(order) -> Order:
    order = Order.objects.get(pk=_order_id(order))
    subtotal, tax = recompute_aggregates(order)
    expected = {
        'subtotal': subtotal,
        'tax_cgst': tax.cgst,
        'tax_sgst': tax.sgst,
        'tax_igst': tax.igst,
        'total': money.subtract(money.add(subtotal, tax.total_tax), order.discount_amount),
    }
    mismatched: List[str] = [name for name, value in expected.items() if getattr(order, name) != value]
    if mismatched:
        raise alert_invariant_violation(
            'stored aggregates disagree with items', order_id=order.pk,
            fields=mismatched, expected=expected,
        )
    return order
