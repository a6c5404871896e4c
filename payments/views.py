from __future__ import annotations

import logging

from django.conf import settings
from django.http import HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from core.exceptions import AuthenticationError, NotFoundError, OrderingError
from core.tenancy import ensure_tenant, resolve_tenant
from orders.models import Order

from . import services
from .serializers import CaptureRequestSerializer, GatewayOrderRequestSerializer

logger = logging.getLogger(__name__)


@api_view(["POST"])
@permission_classes([AllowAny])
def create_gateway_order(request):
    """
    POST /api/payments/gateway-order/  {orderId}
    Returns what the checkout widget needs to open the payment sheet.
    """
    tenant = resolve_tenant(request)
    serializer = GatewayOrderRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    order_id = serializer.validated_data['orderId']

    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        raise NotFoundError('Order not found.', order_id=order_id)
    ensure_tenant(order, tenant, 'order')

    order = services.create_gateway_order(order)
    return Response({
        'gatewayOrderId': order.gateway_order_id,
        'key': settings.RAZORPAY_KEY_ID,
        'amount': order.total,
        'currency': settings.PAYMENT_CURRENCY,
    })


@api_view(["POST"])
@permission_classes([AllowAny])
def capture_payment(request):
    """
    POST /api/payments/capture/
    {orderId, gatewayOrderId, gatewayPaymentId, signature, amount?}
    """
    tenant = resolve_tenant(request)
    serializer = CaptureRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    result = services.capture_payment(
        tenant,
        order_id=data['orderId'],
        gateway_order_id=data['gatewayOrderId'],
        gateway_payment_id=data['gatewayPaymentId'],
        signature=data['signature'],
        amount=data.get('amount'),
    )
    return Response({
        'success': True,
        'alreadyApplied': result.already_applied,
        'orderId': result.order.pk,
        'status': result.order.status,
    })


@csrf_exempt
@require_http_methods(["POST"])
def gateway_webhook(request):
    """
    Razorpay webhook. The raw body is signed with the webhook secret and the
    signature arrives in X-Razorpay-Signature.
    """
    payload = request.body
    signature = request.META.get('HTTP_X_RAZORPAY_SIGNATURE', '')
    event_id = request.META.get('HTTP_X_RAZORPAY_EVENT_ID') or None

    try:
        event = services.handle_webhook(payload, signature, event_id=event_id)
    except AuthenticationError:
        logger.error("Webhook signature verification failed")
        return HttpResponse('Invalid signature', status=400, content_type='text/plain')
    except OrderingError as e:
        logger.error("Webhook processing failed: %s", e.message)
        return HttpResponse('Webhook processing failed', status=e.status_code, content_type='text/plain')

    logger.info("Webhook event %s (%s) acknowledged", event.event_id, event.event_type)
    return HttpResponse('Webhook processed successfully', status=200, content_type='text/plain')
