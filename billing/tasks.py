from __future__ import annotations

import logging

from celery import shared_task

from core.exceptions import ConflictError
from orders.models import Order

from .services import assign_invoice_number

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=5, default_retry_delay=30)
def issue_invoice_task(self, order_id: int):
    """Assign the invoice number of a freshly completed order."""
    order = Order.objects.select_related('location').filter(pk=order_id).first()
    if order is None:
        logger.warning("issue_invoice_task: order %s not found", order_id)
        return None
    if order.status != Order.STATUS_COMPLETED:
        logger.info("issue_invoice_task: order %s is %s, skipping", order_id, order.status)
        return None
    try:
        invoice = assign_invoice_number(order)
    except ConflictError as exc:
        logger.warning("issue_invoice_task: conflict on order %s, retrying", order_id)
        raise self.retry(exc=exc, countdown=self.default_retry_delay * (2 ** self.request.retries))
    return invoice.invoice_number
