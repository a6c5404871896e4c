from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.exceptions import NotFoundError
from core.tenancy import ensure_tenant, resolve_tenant
from orders.models import Order

from .services import issue_invoice


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def order_invoice(request, order_id: int):
    """
    GET /api/billing/orders/{id}/invoice/
    Invoice data of a completed order; the number is assigned on the first call.
    """
    tenant = resolve_tenant(request)
    order = Order.objects.select_related('location').filter(pk=order_id).first()
    if order is None:
        raise NotFoundError('Order not found.', order_id=order_id)
    ensure_tenant(order, tenant, 'order')
    return Response(issue_invoice(order).as_dict())
