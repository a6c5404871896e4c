from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from core.exceptions import NotFoundError
from core.models import Location
from core.tenancy import TenantScopedMixin, ensure_tenant
from coupons.services import find_coupon

from .models import Order
from .serializers import (
    AddItemsSerializer,
    OrderCreateSerializer,
    OrderSerializer,
    OrderStatusHistorySerializer,
    QuantityChangeSerializer,
    StatusChangeSerializer,
)
from .services import ledger


def _is_pos(request) -> bool:
    """Staff at the till may key in open prices and pick the order channel."""
    user = getattr(request, 'user', None)
    return bool(user and user.is_authenticated and user.is_staff)


class OrderViewSet(TenantScopedMixin,
                   mixins.ListModelMixin,
                   mixins.RetrieveModelMixin,
                   viewsets.GenericViewSet):
    """
    Orders of the caller's tenant.

    POST   /api/orders/                           - place an order (public)
    GET    /api/orders/{id}/                      - order with items and aggregates
    POST   /api/orders/{id}/items/                - add items
    PATCH  /api/orders/{id}/items/{item_id}/      - change quantity
    DELETE /api/orders/{id}/items/{item_id}/      - remove item
    POST   /api/orders/{id}/status/               - status transition
    GET    /api/orders/{id}/history/              - status audit trail
    """

    serializer_class = OrderSerializer
    lookup_value_regex = '[0-9]+'
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['status', 'location', 'channel']
    ordering_fields = ['created_at', 'total']
    ordering = ['-created_at']

    def get_permissions(self):
        if self.action == 'create':
            return [AllowAny()]
        return [IsAuthenticated()]

    def get_queryset(self):
        return (
            Order.objects
            .filter(tenant=self.get_tenant())
            .select_related('location', 'coupon')
            .prefetch_related('items')
        )

    def get_object(self):
        order = Order.objects.select_related('location', 'coupon').filter(pk=self.kwargs['pk']).first()
        if order is None:
            raise NotFoundError('Order not found.', order_id=self.kwargs['pk'])
        ensure_tenant(order, self.get_tenant(), 'order')
        return order

    def _respond(self, order, status_code=status.HTTP_200_OK):
        order = Order.objects.select_related('coupon').prefetch_related('items').get(pk=order.pk)
        return Response(OrderSerializer(order).data, status=status_code)

    def create(self, request, *args, **kwargs):
        tenant = self.get_tenant()
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        location = Location.objects.filter(pk=data['locationId'], is_active=True).first()
        if location is None:
            raise NotFoundError('Location not found.', location_id=data['locationId'])
        ensure_tenant(location, tenant, 'location')

        coupon = None
        if (data.get('couponCode') or '').strip():
            coupon = find_coupon(tenant, data['couponCode'])

        pos = _is_pos(request)
        order = ledger.create_order(
            tenant,
            location,
            serializer.lines(tenant, allow_open_price=pos),
            coupon=coupon,
            customer_state=data.get('customerState'),
            channel=data['channel'] if pos else Order.CHANNEL_CUSTOMER,
            customer=serializer.customer(),
        )
        return self._respond(order, status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], url_path='items')
    def add_items(self, request, pk=None):
        order = self.get_object()
        serializer = AddItemsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = ledger.add_items(order, serializer.lines(self.get_tenant(), allow_open_price=_is_pos(request)))
        return self._respond(order)

    @action(detail=True, methods=['patch', 'delete'], url_path=r'items/(?P<item_id>[0-9]+)')
    def item(self, request, pk=None, item_id=None):
        order = self.get_object()
        if request.method == 'DELETE':
            order = ledger.remove_item(order, int(item_id))
            return self._respond(order)

        serializer = QuantityChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = ledger.apply_item_quantity_change(order, int(item_id), serializer.validated_data['quantity'])
        return self._respond(order)

    @action(detail=True, methods=['post'], url_path='status')
    def change_status(self, request, pk=None):
        order = self.get_object()
        serializer = StatusChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = ledger.transition_status(
            order,
            serializer.validated_data['status'],
            by_user=request.user,
            note=serializer.validated_data.get('note', ''),
        )
        return self._respond(order)

    @action(detail=True, methods=['get'])
    def history(self, request, pk=None):
        order = self.get_object()
        return Response(OrderStatusHistorySerializer(order.status_history.all(), many=True).data)
