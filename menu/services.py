"""
Turns requested order lines into priced ``LineInput``s.

Customer lines name a menu item and a quantity; the price, GST rate and name
always come from the catalog. Only point-of-sale staff may key in an open
price for an off-menu line.
"""
from __future__ import annotations

import logging
from typing import Iterable, List

from core.exceptions import NotFoundError, ValidationError
from orders.services.ledger import LineInput

from .models import MenuItem

logger = logging.getLogger(__name__)


def _load_menu_items(tenant, refs: Iterable[str]) -> dict:
    ids = set()
    for ref in refs:
        if not str(ref).isdigit():
            raise NotFoundError('Menu item not found.', menu_item_id=ref)
        ids.add(int(ref))
    items = MenuItem.objects.filter(tenant=tenant, pk__in=ids, is_available=True)
    return {str(item.pk): item for item in items}


def price_lines(tenant, requested: Iterable[dict], allow_open_price: bool = False) -> List[LineInput]:
    """
    Price each requested line.

    ``requested`` holds validated ``LineInputSerializer`` data. A line with a
    ``menuItemId`` is priced from that item; any client-sent price or rate is
    ignored. A line without one is an open-price line and needs
    ``allow_open_price``.
    """
    requested = list(requested)
    refs = [str(data['menuItemId']).strip() for data in requested if (data.get('menuItemId') or '').strip()]
    catalog = _load_menu_items(tenant, refs)

    lines = []
    for data in requested:
        ref = str(data.get('menuItemId') or '').strip()
        if ref:
            menu_item = catalog.get(ref)
            if menu_item is None:
                raise NotFoundError('Menu item not found.', menu_item_id=ref)
            if data.get('unitPrice') is not None and data['unitPrice'] != menu_item.price:
                logger.info("Ignoring client price %s for menu item %s (catalog %s)",
                            data['unitPrice'], menu_item.pk, menu_item.price)
            lines.append(LineInput(
                name=menu_item.name,
                unit_price=menu_item.price,
                qty=data['quantity'],
                tax_rate_bps=menu_item.tax_rate_bps,
                menu_item_ref=ref,
                options=data.get('options') or [],
            ))
            continue

        if not allow_open_price:
            raise ValidationError('menuItemId is required.', field='menuItemId')
        missing = [key for key in ('name', 'unitPrice', 'taxRateBps') if data.get(key) in (None, '')]
        if missing:
            raise ValidationError(f"Open-price lines need {', '.join(missing)}.", field=missing[0])
        lines.append(LineInput(
            name=data['name'],
            unit_price=data['unitPrice'],
            qty=data['quantity'],
            tax_rate_bps=data['taxRateBps'],
            options=data.get('options') or [],
        ))
    return lines
