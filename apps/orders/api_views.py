# apps/orders/api_views.py

from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.orders.domain import PaymentRef
from core import container as composition_root

from .models import Order, OrderStatusEvent
from .serializers import (
    CancelRequestSerializer,
    OrderSerializer,
    OrderStatusEventSerializer,
    RefundRequestSerializer,
    SettleRequestSerializer,
)


class StaffApiMixin:
    permission_classes = [IsAuthenticated, IsAdminUser]

    def order_response(self, public_id, http_status=status.HTTP_200_OK) -> Response:
        order = get_object_or_404(Order.objects.prefetch_related("items", "refunds"), public_id=public_id)
        return Response(OrderSerializer(order).data, status=http_status)


class OrderDetailApi(StaffApiMixin, generics.RetrieveAPIView):
    serializer_class = OrderSerializer
    lookup_field = "public_id"
    lookup_url_kwarg = "public_id"

    def get_queryset(self):
        return Order.objects.prefetch_related("items", "refunds")


class OrderStatusEventListApi(StaffApiMixin, generics.ListAPIView):
    serializer_class = OrderStatusEventSerializer

    def get_queryset(self):
        order = get_object_or_404(Order, public_id=self.kwargs["public_id"])
        return (
            OrderStatusEvent.objects
            .filter(order=order)
            .select_related("actor", "order")
            .order_by("-created_at", "-id")
        )


class OrderRefundApi(StaffApiMixin, APIView):
    """POST {amount?, reason?}: без amount - возврат всего остатка."""

    def post(self, request, public_id):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        composition_root.get_container().lifecycle.refund(
            public_id,
            serializer.validated_data.get("amount"),
            reason=serializer.validated_data["reason"],
            source=OrderStatusEvent.SOURCE_STAFF,
            actor=request.user,
        )
        return self.order_response(public_id)


class OrderCancelApi(StaffApiMixin, APIView):
    def post(self, request, public_id):
        serializer = CancelRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        composition_root.get_container().lifecycle.cancel(
            public_id,
            reason=serializer.validated_data["reason"],
            source=OrderStatusEvent.SOURCE_STAFF,
            actor=request.user,
        )
        return self.order_response(public_id)


class OrderSettleApi(StaffApiMixin, APIView):
    """
    Staff подтверждает поступление денег по on_hold заказу
    (банковский перевод или прямой дебет): on_hold -> paid.
    """

    def post(self, request, public_id):
        serializer = SettleRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        lifecycle = composition_root.get_container().lifecycle
        order = lifecycle.repository.get(public_id)
        if order.status != Order.STATUS_ON_HOLD and not order.is_paid:
            raise ValidationError({"status": ["Only on-hold orders can be settled."]})

        reference = serializer.validated_data["reference"] or (order.payment_ref.external_id if order.payment_ref else "")
        provider = order.payment_ref.provider if order.payment_ref else order.payment_method
        if not reference:
            raise ValidationError({"reference": ["Order has no payment reference, pass one explicitly."]})

        lifecycle.finalize(
            public_id,
            PaymentRef(provider, reference),
            source=OrderStatusEvent.SOURCE_STAFF,
            actor=request.user,
        )
        return self.order_response(public_id)
