from __future__ import annotations

from django.db import IntegrityError, transaction
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, status, viewsets
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from core.exceptions import ConflictError, NotFoundError
from core.tenancy import TenantScopedMixin, resolve_tenant

from .api_serializers import CouponSerializer, CouponValidateSerializer
from .models import Coupon
from .services import CHANNEL_CUSTOMER, CouponRejected, evaluate_coupon, find_coupon


class CouponViewSet(TenantScopedMixin, viewsets.ModelViewSet):
    serializer_class = CouponSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['is_active', 'discount_type', 'active_for_customer_end']
    search_fields = ['code', 'description']
    ordering_fields = ['created_at', 'updated_at', 'used_count']
    ordering = ['-created_at']

    def get_queryset(self):
        return Coupon.objects.filter(tenant=self.get_tenant())

    def perform_create(self, serializer):
        try:
            with transaction.atomic():
                serializer.save(tenant=self.get_tenant())
        except IntegrityError:
            raise ConflictError('A coupon with this code already exists.', field='code')

    def perform_update(self, serializer):
        try:
            with transaction.atomic():
                serializer.save()
        except IntegrityError:
            raise ConflictError('A coupon with this code already exists.', field='code')


@api_view(["POST"])
@permission_classes([AllowAny])
def validate_coupon_view(request):
    """
    Check a coupon against an order amount (paise) for a customer checkout.

    200 {"valid": true, "coupon": {...}} or 400/404 {"valid": false, "error", "reason"}.
    """
    tenant = resolve_tenant(request)
    serializer = CouponValidateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    try:
        coupon = find_coupon(tenant, data['code'])
    except NotFoundError:
        return Response({'valid': False, 'error': 'Invalid coupon code', 'reason': 'not_found'},
                        status=status.HTTP_404_NOT_FOUND)

    try:
        discount = evaluate_coupon(coupon, data['orderAmount'], channel=CHANNEL_CUSTOMER)
    except CouponRejected as exc:
        return Response({'valid': False, 'error': exc.message, 'reason': exc.reason},
                        status=status.HTTP_400_BAD_REQUEST)

    return Response({
        'valid': True,
        'coupon': {
            'id': coupon.pk,
            'code': coupon.code,
            'description': coupon.description,
            'discountType': coupon.discount_type,
            'discountValue': coupon.discount_value,
            'discountAmount': discount,
        },
    })
