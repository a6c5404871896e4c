from django.db import transaction
from django.dispatch import receiver

from orders.models import Order
from orders.signals import order_status_changed

from .tasks import issue_invoice_task


@receiver(order_status_changed, dispatch_uid="billing_issue_invoice_on_completion")
def issue_invoice_on_completion(sender, order, old, new, **kwargs):
    if new != Order.STATUS_COMPLETED:
        return
    order_id = order.pk
    transaction.on_commit(lambda: issue_invoice_task.delay(order_id))
