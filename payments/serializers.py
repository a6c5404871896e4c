from rest_framework import serializers


class GatewayOrderRequestSerializer(serializers.Serializer):
    orderId = serializers.IntegerField(min_value=1)


class CaptureRequestSerializer(serializers.Serializer):
    orderId = serializers.IntegerField(min_value=1)
    gatewayOrderId = serializers.CharField(max_length=64)
    gatewayPaymentId = serializers.CharField(max_length=64)
    signature = serializers.CharField(max_length=256)
    amount = serializers.IntegerField(required=False, allow_null=True, min_value=0)
