from rest_framework import serializers

from menu.services import price_lines

from .models import MAX_TAX_RATE_BPS, Order, OrderItem, OrderStatusHistory


class OrderItemSerializer(serializers.ModelSerializer):
    menuItemId = serializers.CharField(source='menu_item_ref', read_only=True)
    name = serializers.CharField(source='name_snapshot', read_only=True)
    unitPrice = serializers.IntegerField(source='unit_price', read_only=True)
    quantity = serializers.IntegerField(source='qty', read_only=True)
    taxRateBps = serializers.IntegerField(source='tax_rate_bps', read_only=True)
    options = serializers.JSONField(source='options_snapshot', read_only=True)
    lineSubtotal = serializers.IntegerField(source='line_subtotal', read_only=True)

    class Meta:
        model = OrderItem
        fields = ['id', 'menuItemId', 'name', 'unitPrice', 'quantity', 'taxRateBps', 'options', 'lineSubtotal']


class OrderStatusHistorySerializer(serializers.ModelSerializer):
    previousStatus = serializers.CharField(source='previous_status', read_only=True)
    newStatus = serializers.CharField(source='new_status', read_only=True)
    changedBy = serializers.CharField(source='changed_by', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = OrderStatusHistory
        fields = ['previousStatus', 'newStatus', 'changedBy', 'note', 'createdAt']


class OrderSerializer(serializers.ModelSerializer):
    """Read-only order view; every money field is an integer in paise."""

    locationId = serializers.IntegerField(source='location_id', read_only=True)
    customerState = serializers.CharField(source='customer_state', read_only=True)
    taxCgst = serializers.IntegerField(source='tax_cgst', read_only=True)
    taxSgst = serializers.IntegerField(source='tax_sgst', read_only=True)
    taxIgst = serializers.IntegerField(source='tax_igst', read_only=True)
    discountAmount = serializers.IntegerField(source='discount_amount', read_only=True)
    couponCode = serializers.SerializerMethodField()
    gatewayOrderId = serializers.CharField(source='gateway_order_id', read_only=True)
    gatewayPaymentId = serializers.CharField(source='gateway_payment_id', read_only=True)
    placedAt = serializers.DateTimeField(source='placed_at', read_only=True)
    acceptedAt = serializers.DateTimeField(source='accepted_at', read_only=True)
    inKitchenAt = serializers.DateTimeField(source='in_kitchen_at', read_only=True)
    readyAt = serializers.DateTimeField(source='ready_at', read_only=True)
    servedAt = serializers.DateTimeField(source='served_at', read_only=True)
    completedAt = serializers.DateTimeField(source='completed_at', read_only=True)
    canceledAt = serializers.DateTimeField(source='canceled_at', read_only=True)
    refundedAt = serializers.DateTimeField(source='refunded_at', read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'status', 'channel', 'locationId', 'customerState',
            'subtotal', 'taxCgst', 'taxSgst', 'taxIgst', 'discountAmount', 'total',
            'couponCode', 'gatewayOrderId', 'gatewayPaymentId', 'version',
            'placedAt', 'acceptedAt', 'inKitchenAt', 'readyAt', 'servedAt',
            'completedAt', 'canceledAt', 'refundedAt', 'items',
        ]
        read_only_fields = fields

    def get_couponCode(self, obj):
        return obj.coupon.code if obj.coupon_id else None


class LineInputSerializer(serializers.Serializer):
    """
    A requested line. Customers send ``menuItemId``, ``quantity`` and
    ``options``; ``name``, ``unitPrice`` and ``taxRateBps`` only count for
    staff open-price lines.
    """

    menuItemId = serializers.CharField(required=False, allow_blank=True, default='', max_length=64)
    name = serializers.CharField(required=False, allow_blank=True, max_length=200)
    unitPrice = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    quantity = serializers.IntegerField(min_value=1)
    taxRateBps = serializers.IntegerField(required=False, allow_null=True, min_value=0, max_value=MAX_TAX_RATE_BPS)
    options = serializers.ListField(child=serializers.JSONField(), required=False, default=list)


class OrderCreateSerializer(serializers.Serializer):
    locationId = serializers.IntegerField(min_value=1)
    items = LineInputSerializer(many=True, allow_empty=False)
    couponCode = serializers.CharField(required=False, allow_blank=True, max_length=64)
    customerState = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=2)
    channel = serializers.ChoiceField(choices=Order.CHANNEL_CHOICES, default=Order.CHANNEL_CUSTOMER)
    customerName = serializers.CharField(required=False, allow_blank=True, max_length=200)
    customerEmail = serializers.EmailField(required=False, allow_blank=True)
    customerPhone = serializers.CharField(required=False, allow_blank=True, max_length=20)

    def lines(self, tenant, allow_open_price=False):
        return price_lines(tenant, self.validated_data['items'], allow_open_price=allow_open_price)

    def customer(self):
        data = self.validated_data
        return {
            'name': data.get('customerName', ''),
            'email': data.get('customerEmail', ''),
            'phone': data.get('customerPhone', ''),
        }


class AddItemsSerializer(serializers.Serializer):
    items = LineInputSerializer(many=True, allow_empty=False)

    def lines(self, tenant, allow_open_price=False):
        return price_lines(tenant, self.validated_data['items'], allow_open_price=allow_open_price)


class QuantityChangeSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


class StatusChangeSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.STATUS_CHOICES)
    note = serializers.CharField(required=False, allow_blank=True, max_length=255, default='')
