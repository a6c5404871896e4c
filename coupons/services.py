from __future__ import annotations

import logging
from datetime import datetime
from typing import NamedTuple, Optional

from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from core import money
from core.exceptions import ConflictError, NotFoundError, ValidationError

from .models import Coupon, CouponRedemption, normalize_code

logger = logging.getLogger(__name__)

REASON_INACTIVE = 'inactive'
REASON_NOT_YET_VALID = 'not_yet_valid'
REASON_EXPIRED = 'expired'
REASON_BELOW_MINIMUM = 'below_minimum'
REASON_LIMIT_REACHED = 'limit_reached'
REASON_NOT_AVAILABLE_ONLINE = 'not_available_online'

REASON_MESSAGES = {
    REASON_INACTIVE: 'Coupon is inactive',
    REASON_NOT_YET_VALID: 'Coupon is not yet valid',
    REASON_EXPIRED: 'Coupon has expired',
    REASON_BELOW_MINIMUM: 'Order amount is below the coupon minimum',
    REASON_LIMIT_REACHED: 'Coupon usage limit reached',
    REASON_NOT_AVAILABLE_ONLINE: 'Coupon is not available for online orders',
}

CHANNEL_CUSTOMER = 'customer'


class CouponRejected(ValidationError):
    """The coupon cannot be applied; ``reason`` says why."""

    default_detail = 'Coupon is not valid for this order.'
    default_code = 'coupon_rejected'

    def __init__(self, reason: str, **details):
        self.reason = reason
        super().__init__(REASON_MESSAGES.get(reason, self.default_detail), reason=reason, **details)


class CouponLimitReached(ConflictError):
    """Lost the race for the last remaining use of a coupon."""

    default_detail = REASON_MESSAGES[REASON_LIMIT_REACHED]
    default_code = 'coupon_limit_reached'

    def __init__(self, **details):
        self.reason = REASON_LIMIT_REACHED
        super().__init__(self.default_detail, reason=REASON_LIMIT_REACHED, **details)


class CouponCheck(NamedTuple):
    ok: bool
    reason: Optional[str] = None


# ---------------------------
# Lookup
# ---------------------------
def find_coupon(tenant, code: str) -> Coupon:
    code = normalize_code(code)
    if not code:
        raise ValidationError('Coupon code is required.', field='code')
    coupon = Coupon.objects.filter(tenant=tenant, code__iexact=code).first()
    if coupon is None:
        raise NotFoundError('Invalid coupon code', coupon_code=code)
    return coupon


# ---------------------------
# Rules
# ---------------------------
def validate_coupon(coupon: Coupon, order_amount: int, now: Optional[datetime] = None) -> CouponCheck:
    """
    Run the coupon checks in a fixed order; the first failure names the reason.
    """
    money.ensure_amount(order_amount, 'order_amount')
    now = now or timezone.now()

    if not coupon.is_active:
        return CouponCheck(False, REASON_INACTIVE)
    if coupon.valid_from and now < coupon.valid_from:
        return CouponCheck(False, REASON_NOT_YET_VALID)
    if coupon.valid_until and now > coupon.valid_until:
        return CouponCheck(False, REASON_EXPIRED)
    if order_amount < coupon.min_order_amount:
        return CouponCheck(False, REASON_BELOW_MINIMUM)
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        return CouponCheck(False, REASON_LIMIT_REACHED)
    return CouponCheck(True)


def compute_discount(coupon: Coupon, order_amount: int) -> int:
    """
    The discount a coupon gives on ``order_amount``. Every caller goes through here.

    Percentage: ``order_amount * bps / 10000`` rounded half-up, capped at
    ``max_discount_amount``. Fixed: the coupon amount, never more than the order.
    """
    money.ensure_amount(order_amount, 'order_amount')
    if order_amount <= 0:
        return 0

    if coupon.discount_type == Coupon.TYPE_PERCENTAGE:
        discount = money.multiply_rate(order_amount, coupon.discount_value)
        if coupon.max_discount_amount is not None:
            discount = min(discount, coupon.max_discount_amount)
        return discount

    if coupon.discount_type == Coupon.TYPE_FIXED:
        return min(money.ensure_amount(coupon.discount_value, 'discount_value'), order_amount)

    raise ValidationError(f"Unknown discount type '{coupon.discount_type}'.", field='discount_type')


def evaluate_coupon(coupon: Coupon, order_amount: int, now: Optional[datetime] = None,
                    channel: Optional[str] = None) -> int:
    """Validate and price a coupon in one step; raises ``CouponRejected``."""
    if channel == CHANNEL_CUSTOMER and not coupon.active_for_customer_end:
        raise CouponRejected(REASON_NOT_AVAILABLE_ONLINE, coupon_code=coupon.code)
    check = validate_coupon(coupon, order_amount, now)
    if not check.ok:
        raise CouponRejected(check.reason, coupon_code=coupon.code)
    return compute_discount(coupon, order_amount)


def recheck_minimum(coupon: Coupon, order_amount: int) -> None:
    """
    Re-validate an already redeemed coupon after the order changed.

    The discount itself stays as priced at creation; only the minimum order
    amount is enforced again.
    """
    money.ensure_amount(order_amount, 'order_amount')
    if order_amount < coupon.min_order_amount:
        raise CouponRejected(REASON_BELOW_MINIMUM, coupon_code=coupon.code, order_amount=order_amount)


# ---------------------------
# Redemption
# ---------------------------
@transaction.atomic
def redeem_coupon(coupon: Coupon, order, discount_amount: int) -> CouponRedemption:
    """
    Count one use of ``coupon`` for ``order``.

    The increment is a single conditional UPDATE, so concurrent redemptions can
    never push ``used_count`` past ``usage_limit``. Redeeming the same order
    twice returns the existing redemption without counting again.
    """
    existing = CouponRedemption.objects.filter(order=order).first()
    if existing is not None:
        return existing

    updated = (
        Coupon.objects
        .filter(pk=coupon.pk)
        .filter(Q(usage_limit__isnull=True) | Q(used_count__lt=F('usage_limit')))
        .update(used_count=F('used_count') + 1)
    )
    if not updated:
        logger.info("Coupon %s limit reached while redeeming for order %s", coupon.code, order.pk)
        raise CouponLimitReached(coupon_code=coupon.code)

    redemption = CouponRedemption.objects.create(
        coupon=coupon, order=order, discount_amount=discount_amount,
    )
    logger.info("Coupon %s redeemed for order %s (%s)", coupon.code, order.pk, money.format_minor(discount_amount))
    return redemption
