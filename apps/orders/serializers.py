# apps/orders/serializers.py

from rest_framework import serializers

from .logic.status_fsm import PAID_STATUSES, allowed_next_statuses
from .models import Order, OrderItem, OrderRefund, OrderStatusEvent


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = ["public_id", "sku", "product_name", "qty", "unit_price", "tax_rate", "line_total"]
        read_only_fields = fields


class OrderRefundSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderRefund
        fields = ["public_id", "amount", "provider_refund_id", "source", "reason", "created_at"]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """
    Карточка заказа для back office. Только чтение: статус меняется
    исключительно командами refund/cancel/settle.
    """

    items = OrderItemSerializer(many=True, read_only=True)
    refunds = OrderRefundSerializer(many=True, read_only=True)
    settlement_confirmed = serializers.SerializerMethodField()
    allowed_transitions = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "public_id",
            "status",
            "email",
            "currency",
            "subtotal",
            "tax_total",
            "shipping_total",
            "discount_total",
            "total",
            "refunded_total",
            "coupon_code",
            "payment_method",
            "payment_provider",
            "payment_reference",
            "failure_reason",
            "settlement_confirmed",
            "allowed_transitions",
            "shipping_address",
            "billing_address",
            "items",
            "refunds",
            "paid_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_settlement_confirmed(self, obj) -> bool:
        # on_hold (перевод/мандат) = деньги ещё не подтверждены
        return obj.status in PAID_STATUSES

    def get_allowed_transitions(self, obj) -> list[str]:
        return list(allowed_next_statuses(current=obj.status))


class OrderStatusEventSerializer(serializers.ModelSerializer):
    order = serializers.UUIDField(source="order.public_id", read_only=True)
    actor = serializers.CharField(source="actor.username", read_only=True, allow_null=True)

    class Meta:
        model = OrderStatusEvent
        fields = [
            "public_id",
            "order",
            "actor",
            "from_status",
            "to_status",
            "reason",
            "source",
            "metadata",
            "created_at",
        ]
        read_only_fields = fields


class RefundRequestSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, min_value=0)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class CancelRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class SettleRequestSerializer(serializers.Serializer):
    reference = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
