"""
DRF exception handler.

Use-case'ы бросают доменные ошибки (apps.orders.errors / apps.payments.errors),
а HTTP-код выбирается здесь, в одном месте.
"""
from __future__ import annotations

import structlog
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from apps.orders.errors import CheckoutInvalid, InvalidTransition, OrderNotFound, RefundRejected
from apps.payments.errors import ApiError, GatewayError, PaymentDataInvalid, SignatureError
from apps.payments.providers.registry import UnknownGateway

logger = structlog.get_logger(__name__)


def exception_handler(exc, context):
    response = drf_exception_handler(exc, context)
    if response is not None:
        return response

    if isinstance(exc, CheckoutInvalid):
        return Response(exc.errors, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, PaymentDataInvalid):
        return Response({"payment_data": exc.errors}, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, UnknownGateway):
        return Response({"payment_method": [str(exc)]}, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, OrderNotFound):
        return Response({"detail": str(exc), "code": "order_not_found"}, status=status.HTTP_404_NOT_FOUND)

    if isinstance(exc, InvalidTransition):
        return Response(
            {"status": [str(exc)], "code": "invalid_transition"},
            status=status.HTTP_409_CONFLICT,
        )

    if isinstance(exc, RefundRejected):
        return Response({"amount": [str(exc)], "code": "refund_rejected"}, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, GatewayError):
        logger.warning("gateway_error_response", code=exc.code, retryable=exc.retryable, message=exc.message)
        return Response(
            {"detail": exc.message, "code": exc.code or "gateway_error", "retryable": exc.retryable},
            status=status.HTTP_503_SERVICE_UNAVAILABLE if exc.retryable else status.HTTP_402_PAYMENT_REQUIRED,
        )

    if isinstance(exc, SignatureError):
        return Response({"detail": str(exc), "code": "signature_error"}, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, ApiError):
        logger.error("provider_api_error_response", error=str(exc))
        return Response(
            {"detail": "Payment provider error.", "code": "provider_error"},
            status=status.HTTP_502_BAD_GATEWAY,
        )

    return None
