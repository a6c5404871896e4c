"""
Invoice numbering and composition.

``compose_invoice`` is a pure function of the order, its items and its
location; only ``assign_invoice_number`` touches the database.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from core import money
from core.exceptions import ForbiddenError, InvariantViolation
from core.gst import ZERO, compute_item_tax
from orders.models import Order

from .models import Invoice, InvoiceSequence

logger = logging.getLogger(__name__)

FISCAL_YEAR_START_MONTH = 4
SEQUENCE_WIDTH = 5


@dataclass(frozen=True)
class InvoiceLine:
    name: str
    qty: int
    unit_price: int
    tax_rate_bps: int
    subtotal: int
    tax: int
    cgst: int
    sgst: int
    igst: int


@dataclass(frozen=True)
class InvoiceData:
    invoice_number: str
    invoice_date: date
    order_id: int
    location: dict
    customer: dict
    lines: Tuple[InvoiceLine, ...] = field(default_factory=tuple)
    subtotal: int = 0
    tax_cgst: int = 0
    tax_sgst: int = 0
    tax_igst: int = 0
    discount_amount: int = 0
    total: int = 0

    @property
    def total_tax(self) -> int:
        return money.add(self.tax_cgst, self.tax_sgst, self.tax_igst)

    def as_dict(self) -> dict:
        data = asdict(self)
        data['invoice_date'] = self.invoice_date.isoformat()
        data['lines'] = [asdict(line) for line in self.lines]
        data['total_tax'] = self.total_tax
        return data


def fiscal_year_for(moment) -> int:
    """Indian fiscal year (April to March) containing ``moment``, named by its starting year."""
    day = _local_date(moment)
    return day.year if day.month >= FISCAL_YEAR_START_MONTH else day.year - 1


def format_invoice_number(prefix: str, fiscal_year: int, sequence: int) -> str:
    return f"{prefix}-{fiscal_year}-{sequence:0{SEQUENCE_WIDTH}d}"


def next_invoice_sequence(location, fiscal_year: int) -> int:
    """Atomically take the next number of the location's counter for ``fiscal_year``."""
    with transaction.atomic():
        seq, _ = InvoiceSequence.objects.select_for_update().get_or_create(
            location=location, fiscal_year=fiscal_year,
        )
        InvoiceSequence.objects.filter(pk=seq.pk).update(last_number=F('last_number') + 1)
        seq.refresh_from_db(fields=['last_number'])
        return seq.last_number


def assign_invoice_number(order: Order) -> Invoice:
    """
    Give a completed order its invoice number, once.

    Later calls return the invoice created by the first one.
    """
    existing = Invoice.objects.filter(order_id=order.pk).first()
    if existing is not None:
        return existing
    if order.status != Order.STATUS_COMPLETED:
        raise ForbiddenError('Only completed orders can be invoiced.', status=order.status)

    issued_at = order.completed_at or timezone.now()
    fiscal_year = fiscal_year_for(issued_at)
    location = order.location

    try:
        with transaction.atomic():
            # serializes issuance for this order
            Order.objects.select_for_update().filter(pk=order.pk).first()
            existing = Invoice.objects.filter(order_id=order.pk).first()
            if existing is not None:
                return existing
            sequence = next_invoice_sequence(location, fiscal_year)
            invoice = Invoice.objects.create(
                order=order,
                location=location,
                invoice_number=format_invoice_number(location.document_prefix, fiscal_year, sequence),
                fiscal_year=fiscal_year,
                sequence=sequence,
                issued_at=issued_at,
            )
    except IntegrityError:
        invoice = Invoice.objects.filter(order_id=order.pk).first()
        if invoice is None:
            raise
        return invoice

    logger.info("Assigned invoice %s to order %s", invoice.invoice_number, order.pk)
    return invoice


def _location_block(location) -> dict:
    return {
        'name': location.name,
        'address': location.address,
        'gstin': location.gstin,
        'state': location.state_code,
    }


def _customer_block(order: Order, customer: Optional[dict]) -> dict:
    block = {
        'name': order.customer_name,
        'email': order.customer_email,
        'phone': order.customer_phone,
        'state': order.customer_state,
    }
    if customer:
        block.update({k: v for k, v in customer.items() if v not in (None, '')})
    return block


def compose_invoice(order: Order, items: Iterable, location, customer: Optional[dict] = None,
                    invoice_number: str = '', issued_at: Optional[datetime] = None) -> InvoiceData:
    """
    Build the invoice for a completed order.

    Each line's tax comes from the rate snapshotted on the order item. The
    result depends only on the arguments.
    """
    if order.status != Order.STATUS_COMPLETED:
        raise ForbiddenError('Only completed orders can be invoiced.', status=order.status)

    lines: List[InvoiceLine] = []
    subtotal = 0
    tax = ZERO
    for item in items:
        line_subtotal = money.multiply_qty(item.unit_price, item.qty)
        line_tax = compute_item_tax(line_subtotal, item.tax_rate_bps, order.location_state, order.customer_state)
        lines.append(InvoiceLine(
            name=item.name_snapshot,
            qty=item.qty,
            unit_price=item.unit_price,
            tax_rate_bps=item.tax_rate_bps,
            subtotal=line_subtotal,
            tax=line_tax.total_tax,
            cgst=line_tax.cgst,
            sgst=line_tax.sgst,
            igst=line_tax.igst,
        ))
        subtotal = money.add(subtotal, line_subtotal)
        tax = tax + line_tax

    total = money.subtract(money.add(subtotal, tax.total_tax), order.discount_amount)
    if (subtotal, tax.cgst, tax.sgst, tax.igst, total) != (
            order.subtotal, order.tax_cgst, order.tax_sgst, order.tax_igst, order.total):
        raise InvariantViolation(
            'Invoice lines disagree with the order aggregates.',
            order_id=order.pk, subtotal=subtotal, total=total,
        )

    moment = issued_at or order.completed_at
    return InvoiceData(
        invoice_number=invoice_number,
        invoice_date=_local_date(moment),
        order_id=order.pk,
        location=_location_block(location),
        customer=_customer_block(order, customer),
        lines=tuple(lines),
        subtotal=subtotal,
        tax_cgst=tax.cgst,
        tax_sgst=tax.sgst,
        tax_igst=tax.igst,
        discount_amount=order.discount_amount,
        total=total,
    )


def _local_date(moment) -> date:
    if moment is None:
        raise ForbiddenError('Completed order has no completion time.')
    if isinstance(moment, datetime):
        if timezone.is_aware(moment):
            moment = timezone.localtime(moment)
        return moment.date()
    return moment


def issue_invoice(order: Order) -> InvoiceData:
    """Assign the invoice number if needed, then compose the invoice."""
    invoice = assign_invoice_number(order)
    order = Order.objects.select_related('location').get(pk=order.pk)
    items = list(order.items.all())
    return compose_invoice(
        order,
        items,
        order.location,
        invoice_number=invoice.invoice_number,
        issued_at=invoice.issued_at,
    )
