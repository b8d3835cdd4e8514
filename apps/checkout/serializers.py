from rest_framework import serializers


class CartLineSerializer(serializers.Serializer):
    sku = serializers.CharField(max_length=64)
    qty = serializers.IntegerField(min_value=1, max_value=999)


class CheckoutStateSerializer(serializers.Serializer):
    """
    PATCH формы checkout: любые поля по отдельности.
    Бизнес-валидация (обязательные поля адреса, SKU, купон) - при prepare.
    """

    email = serializers.EmailField(required=False, allow_blank=True)
    shipping_address = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False)
    billing_address = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False)
    billing_enabled = serializers.BooleanField(required=False)
    payment_method = serializers.CharField(max_length=32, required=False, allow_blank=True)
    coupon_code = serializers.CharField(max_length=32, required=False, allow_blank=True)
    items = CartLineSerializer(many=True, required=False)

    def validate_coupon_code(self, value):
        return value.strip()


class PaymentStartSerializer(serializers.Serializer):
    method = serializers.CharField(max_length=32)
    temp_order_id = serializers.UUIDField()
    payment_data = serializers.DictField(required=False, default=dict)


class FinalizeSerializer(serializers.Serializer):
    temp_order_id = serializers.UUIDField()
    payment_reference = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    method = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    client_result = serializers.DictField(required=False, default=dict)


class ConfirmSerializer(serializers.Serializer):
    order_reference = serializers.UUIDField()
    payment_reference = serializers.CharField(max_length=128)
    client_result = serializers.DictField(required=False, default=dict)
