from django.urls import path

from .api_views import (
    CheckoutConfirmApi,
    CheckoutFinalizeApi,
    CheckoutPaymentApi,
    CheckoutPrepareApi,
    CheckoutReturnApi,
    CheckoutStateApi,
)

urlpatterns = [
    path("state/", CheckoutStateApi.as_view(), name="checkout-state"),
    path("prepare/", CheckoutPrepareApi.as_view(), name="checkout-prepare"),
    path("payment/", CheckoutPaymentApi.as_view(), name="checkout-payment"),
    path("finalize/", CheckoutFinalizeApi.as_view(), name="checkout-finalize"),
    path("confirm/", CheckoutConfirmApi.as_view(), name="checkout-confirm"),
    path("return/<slug:method>/", CheckoutReturnApi.as_view(), name="checkout-return"),
]
