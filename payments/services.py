"""
Payment capture coordination.

Both the client-side capture callback and the gateway webhook funnel into
``apply_payment``. A ``PaymentEvent`` row keyed by the unique gateway payment
id decides, durably, whether a payment has already been applied; the order
itself only moves to ``accepted`` through the ledger's version-guarded write.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    OrderingError,
    ValidationError,
)
from core.tenancy import ensure_tenant
from orders.models import Order
from orders.services import ledger

from .gateway import RazorpayClient
from .models import GatewayWebhookEvent, PaymentEvent

logger = logging.getLogger(__name__)

EVENT_PAYMENT_CAPTURED = 'payment.captured'


@dataclass
class PaymentResult:
    order: Order
    event: PaymentEvent
    applied: bool
    already_applied: bool = False


def gateway_client() -> RazorpayClient:
    return RazorpayClient()


# ---------------------------
# Signatures
# ---------------------------
def compute_signature(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def _matches(expected: str, provided: Optional[str]) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(expected, provided.strip())


def verify_capture_signature(gateway_order_id: str, gateway_payment_id: str, signature: Optional[str],
                             secret: Optional[str] = None) -> bool:
    """Checkout signature: HMAC-SHA256 of ``order_id|payment_id`` keyed with the API secret."""
    secret = secret or settings.RAZORPAY_KEY_SECRET
    if not secret:
        logger.warning("RAZORPAY_KEY_SECRET not configured; rejecting capture signature")
        return False
    message = f"{gateway_order_id}|{gateway_payment_id}".encode('utf-8')
    return _matches(compute_signature(secret, message), signature)


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    secret = secret or settings.RAZORPAY_WEBHOOK_SECRET
    if not secret:
        logger.warning("RAZORPAY_WEBHOOK_SECRET not configured; rejecting webhook")
        return False
    return _matches(compute_signature(secret, raw_body), signature)


# ---------------------------
# Apply
# ---------------------------
def _already_applied(event: PaymentEvent, order: Order) -> PaymentResult:
    if event.order_id is not None and event.order_id != order.pk:
        logger.error("Payment %s was applied to order %s, not %s", event.gateway_payment_id, event.order_id, order.pk)
        raise ConflictError(
            'This payment has already been applied to another order.',
            gateway_payment_id=event.gateway_payment_id,
        )
    logger.info("Payment %s already applied to order %s", event.gateway_payment_id, order.pk)
    return PaymentResult(order=Order.objects.get(pk=order.pk), event=event, applied=False, already_applied=True)


def apply_payment(order: Order, gateway_payment_id: str, gateway_order_id: str, source: str,
                  amount: Optional[int] = None, event_id: Optional[str] = None) -> PaymentResult:
    """
    Apply a captured payment to ``order`` at most once.

    The second and later arrivals of the same payment id, sequential or racing,
    resolve to ``already_applied`` without touching the order.
    """
    existing = PaymentEvent.objects.filter(gateway_payment_id=gateway_payment_id).first()
    if existing is not None and existing.is_applied:
        return _already_applied(existing, order)

    try:
        with transaction.atomic():
            event, created = PaymentEvent.objects.select_for_update().get_or_create(
                gateway_payment_id=gateway_payment_id,
                defaults={
                    'gateway_order_id': gateway_order_id,
                    'event_id': event_id,
                    'order': order,
                    'source': source,
                    'amount': amount,
                },
            )
            if not created and event.is_applied:
                return _already_applied(event, order)

            accepted = ledger.accept_for_payment(order, gateway_payment_id)
            event.order = order
            event.outcome = PaymentEvent.OUTCOME_APPLIED if accepted else PaymentEvent.OUTCOME_NOOP
            event.applied_at = timezone.now()
            event.save(update_fields=['order', 'outcome', 'applied_at'])
    except IntegrityError:
        event = PaymentEvent.objects.filter(gateway_payment_id=gateway_payment_id).first()
        if event is None:
            # the order row rejected the payment id: it belongs to another order
            raise ConflictError(
                'This payment has already been applied to another order.',
                gateway_payment_id=gateway_payment_id,
            )
        return _already_applied(event, order)

    if accepted:
        logger.info("Payment %s accepted order %s via %s", gateway_payment_id, order.pk, source)
    else:
        logger.info("Payment %s recorded for order %s with no status change", gateway_payment_id, order.pk)
    return PaymentResult(order=Order.objects.get(pk=order.pk), event=event, applied=accepted)


# ---------------------------
# Entry points
# ---------------------------
def create_gateway_order(order: Order) -> Order:
    """Register the order total with the gateway and store the gateway order id."""
    if order.gateway_order_id:
        return order
    if order.status not in Order.PRE_ACCEPT_STATUSES:
        raise ValidationError('Order is not awaiting payment.', status=order.status)
    if order.total <= 0:
        raise ValidationError('Order total must be positive to take a payment.', total=order.total)

    data = gateway_client().create_order(
        amount=order.total,
        receipt=f"order_{order.pk}",
        notes={'order_id': str(order.pk), 'tenant_id': str(order.tenant_id)},
    )
    gateway_order_id = data.get('id') if isinstance(data, dict) else None
    if not gateway_order_id:
        raise ValidationError('Gateway returned no order id.')
    logger.info("Created gateway order %s for order %s", gateway_order_id, order.pk)
    return ledger.set_gateway_order_id(order, gateway_order_id)


def capture_payment(tenant, order_id: int, gateway_order_id: str, gateway_payment_id: str,
                    signature: str, amount: Optional[int] = None) -> PaymentResult:
    if not verify_capture_signature(gateway_order_id, gateway_payment_id, signature):
        logger.warning("Capture signature mismatch for payment %s", gateway_payment_id)
        raise AuthenticationError('Invalid payment signature.')

    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        raise NotFoundError('Order not found.', order_id=order_id)
    ensure_tenant(order, tenant, 'order')

    if not order.gateway_order_id:
        raise ValidationError('Order has no gateway order to pay against.', order_id=order.pk)
    if order.gateway_order_id != gateway_order_id:
        raise ValidationError(
            'Payment does not belong to this order.',
            gateway_order_id=gateway_order_id,
        )
    if amount is not None and amount != order.total:
        raise ValidationError('Paid amount does not match the order total.', amount=amount, total=order.total)

    if getattr(settings, 'PAYMENT_CAPTURE_AT_GATEWAY', False):
        gateway_client().capture_payment(gateway_payment_id, order.total)

    return apply_payment(
        order,
        gateway_payment_id,
        gateway_order_id,
        PaymentEvent.SOURCE_CAPTURE,
        amount=amount if amount is not None else order.total,
    )


def _payment_entity(data: Dict[str, Any]) -> Dict[str, Any]:
    payment = (data.get('payload') or {}).get('payment') or {}
    entity = payment.get('entity') or {}
    return entity if isinstance(entity, dict) else {}


def handle_webhook(raw_body: bytes, signature: Optional[str], event_id: Optional[str] = None) -> GatewayWebhookEvent:
    """
    Verify and process one webhook delivery.

    Deliveries are recorded in ``GatewayWebhookEvent``; a delivery already marked
    processed is acknowledged without doing anything.
    """
    if not verify_webhook_signature(raw_body, signature):
        raise AuthenticationError('Invalid webhook signature.')

    try:
        data = json.loads(raw_body.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError('Webhook body is not valid JSON.')
    if not isinstance(data, dict):
        raise ValidationError('Webhook body must be a JSON object.')

    event_type = str(data.get('event') or 'unknown')
    entity = _payment_entity(data)
    payment_id = entity.get('id')
    if not event_id:
        event_id = f"{event_type}:{payment_id}" if payment_id else hashlib.sha256(raw_body).hexdigest()

    webhook_event, created = GatewayWebhookEvent.objects.get_or_create(
        event_id=event_id,
        defaults={'event_type': event_type, 'payload': data},
    )
    if not created and webhook_event.processed:
        logger.info("Webhook event %s already processed, skipping", event_id)
        return webhook_event

    webhook_event.increment_attempts()
    try:
        if event_type == EVENT_PAYMENT_CAPTURED:
            _handle_payment_captured(webhook_event, entity)
        else:
            logger.info("Unhandled webhook event type: %s", event_type)
            webhook_event.mark_processed()
    except OrderingError as e:
        webhook_event.increment_attempts(f"{type(e).__name__}: {e.message}")
        raise
    return webhook_event


def _handle_payment_captured(webhook_event: GatewayWebhookEvent, entity: Dict[str, Any]) -> None:
    payment_id = entity.get('id')
    gateway_order_id = entity.get('order_id')
    if not payment_id or not gateway_order_id:
        logger.warning("Webhook %s is missing payment or order id", webhook_event.event_id)
        webhook_event.mark_processed(note='missing payment or order id')
        return

    order = Order.objects.filter(gateway_order_id=gateway_order_id).first()
    if order is None:
        logger.warning("Webhook %s references unknown gateway order %s", webhook_event.event_id, gateway_order_id)
        webhook_event.mark_processed(note=f'unknown gateway order {gateway_order_id}')
        return

    amount = entity.get('amount')
    if isinstance(amount, int) and not isinstance(amount, bool) and amount != order.total:
        logger.error("Webhook payment %s amount %s does not match order %s total %s",
                     payment_id, amount, order.pk, order.total)
        webhook_event.mark_processed(note=f'amount mismatch: paid {amount}, total {order.total}')
        return

    apply_payment(
        order,
        payment_id,
        gateway_order_id,
        PaymentEvent.SOURCE_WEBHOOK,
        amount=amount if isinstance(amount, int) else None,
        event_id=webhook_event.event_id,
    )
    webhook_event.mark_processed()
