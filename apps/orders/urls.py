# apps/orders/urls.py
from django.urls import path

from .api_views import (
    OrderCancelApi,
    OrderDetailApi,
    OrderRefundApi,
    OrderSettleApi,
    OrderStatusEventListApi,
)

urlpatterns = [
    path("orders/<uuid:public_id>/", OrderDetailApi.as_view(), name="orders-detail"),
    path("orders/<uuid:public_id>/status-events/", OrderStatusEventListApi.as_view(), name="orders-status-events"),
    path("orders/<uuid:public_id>/refund/", OrderRefundApi.as_view(), name="orders-refund"),
    path("orders/<uuid:public_id>/cancel/", OrderCancelApi.as_view(), name="orders-cancel"),
    path("orders/<uuid:public_id>/settle/", OrderSettleApi.as_view(), name="orders-settle"),
]
