# apps/checkout/api_views.py
import structlog
from django.http import HttpResponseRedirect
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_protect, ensure_csrf_cookie
from rest_framework import status
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.checkout.state import CartLine
from apps.orders.errors import CheckoutInvalid, InvalidTransition, OrderNotFound
from apps.orders.models import Order
from apps.payments.errors import GatewayError
from apps.payments.logic.confirm_payment import confirm_payment
from apps.payments.logic.initiate_payment import initiate_payment
from apps.payments.providers.port import OUTCOME_FAILED, OUTCOME_REQUIRES_ACTION
from apps.payments.providers.registry import UnknownGateway
from core import container as composition_root

from .serializers import CheckoutStateSerializer, ConfirmSerializer, FinalizeSerializer, PaymentStartSerializer

logger = structlog.get_logger(__name__)


def session_key_for(request) -> str:
    # анонимному покупателю сессия нужна до первой записи
    if not request.session.session_key:
        request.session.save()
    return request.session.session_key


def thank_you_url(config, order) -> str:
    return config.thank_you_url.format(order_id=order.public_id)


def payment_response(config, result, *, http_status=status.HTTP_200_OK) -> Response:
    """Единый ответ для finalize/confirm: статус заказа + куда вести браузер."""
    order = result.order
    body = {
        "order_id": str(order.public_id),
        "status": order.status,
        "outcome": result.outcome.status,
        "already_finalized": result.already_finalized,
    }
    if result.outcome.status == OUTCOME_REQUIRES_ACTION:
        body["requires_action"] = True
        body["continuation"] = dict(result.outcome.continuation)
    elif order.status in (Order.STATUS_PAID, Order.STATUS_ON_HOLD) or result.already_finalized:
        body["redirect_url"] = thank_you_url(config, order)
    elif result.outcome.status == OUTCOME_FAILED:
        body["detail"] = result.outcome.message or order.failure_reason
        body["redirect_url"] = f"{config.checkout_url}?payment_error=1"
        http_status = status.HTTP_402_PAYMENT_REQUIRED
    return Response(body, status=http_status)


class CheckoutApi(APIView):
    """
    База checkout-эндпоинтов: анонимная сессия + CSRF.

    DRF сам CSRF не проверяет без SessionAuthentication, поэтому csrf_protect
    навешан на dispatch явно.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    @property
    def container(self):
        # через модуль: тесты подменяют core.container.get_container по пути
        return composition_root.get_container()

    def require_temp_order(self, request, temp_order_id) -> None:
        session_key_for(request)
        state = self.container.sessions.get(request.session)
        if state.temp_order_id != str(temp_order_id):
            raise NotFound("Order is not part of this checkout session.")


@method_decorator(ensure_csrf_cookie, name="dispatch")
@method_decorator(csrf_protect, name="dispatch")
class CheckoutStateApi(CheckoutApi):
    def get(self, request):
        session_key_for(request)
        state = self.container.sessions.get(request.session)
        return Response({**state.to_dict(), "enabled_methods": list(self.container.gateways.enabled_methods())})

    def patch(self, request):
        serializer = CheckoutStateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        changes = dict(serializer.validated_data)
        if "items" in changes:
            changes["items"] = tuple(CartLine(sku=it["sku"], qty=it["qty"]) for it in changes["items"])
        for field_name in ("shipping_address", "billing_address"):
            if field_name in changes:
                changes[field_name] = dict(changes[field_name])

        session_key_for(request)
        state = self.container.sessions.update(request.session, **changes)
        return Response({**state.to_dict(), "enabled_methods": list(self.container.gateways.enabled_methods())})


@method_decorator(csrf_protect, name="dispatch")
class CheckoutPrepareApi(CheckoutApi):
    def post(self, request):
        key = session_key_for(request)
        state = self.container.sessions.get(request.session)
        order = self.container.lifecycle.create_pending(session_key=key, state=state)
        return Response(
            {
                "temp_order_id": str(order.public_id),
                "status": order.status,
                "total": str(order.total),
                "currency": order.currency,
            },
            status=status.HTTP_201_CREATED,
        )


@method_decorator(csrf_protect, name="dispatch")
class CheckoutPaymentApi(CheckoutApi):
    def post(self, request):
        serializer = PaymentStartSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        self.require_temp_order(request, data["temp_order_id"])

        c = self.container
        try:
            result = initiate_payment(
                lifecycle=c.lifecycle,
                gateways=c.gateways,
                config=c.config,
                order_id=data["temp_order_id"],
                method=data["method"],
                payment_data=data["payment_data"],
            )
        except UnknownGateway:
            raise ValidationError({"method": [f"Payment method '{data['method']}' is not available."]})

        order = result.order
        body = {
            "order_id": str(order.public_id),
            "status": order.status,
            "provider": result.handle.provider,
            "payment_reference": result.handle.external_ref,
            "continuation": dict(result.continuation),
        }
        if order.status == Order.STATUS_ON_HOLD:
            body["redirect_url"] = thank_you_url(c.config, order)
        return Response(body, status=status.HTTP_201_CREATED)


@method_decorator(csrf_protect, name="dispatch")
class CheckoutFinalizeApi(CheckoutApi):
    """Браузер вернулся с результатом оплаты: перепроверяем у провайдера и закрываем заказ."""

    def post(self, request):
        serializer = FinalizeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        c = self.container
        order = c.lifecycle.repository.get(data["temp_order_id"])
        if not order.is_paid and order.status != Order.STATUS_ON_HOLD:
            # после finalize сессия уже очищена: повтор по оплаченному заказу разрешаем
            self.require_temp_order(request, data["temp_order_id"])

        result = confirm_payment(
            lifecycle=c.lifecycle,
            gateways=c.gateways,
            order_id=data["temp_order_id"],
            payment_reference=data["payment_reference"],
            client_result=data["client_result"],
            source="checkout",
        )
        return payment_response(c.config, result)


@method_decorator(csrf_protect, name="dispatch")
class CheckoutConfirmApi(CheckoutApi):
    """Синхронное подтверждение после SCA-challenge: {payment_reference, order_reference}."""

    def post(self, request):
        serializer = ConfirmSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        c = self.container
        result = confirm_payment(
            lifecycle=c.lifecycle,
            gateways=c.gateways,
            order_id=data["order_reference"],
            payment_reference=data["payment_reference"],
            client_result=data["client_result"],
            source="confirm",
        )
        return payment_response(c.config, result)


class CheckoutReturnApi(CheckoutApi):
    """
    GET /checkout/return/<method>/?order=...&payment_intent=...|token=...

    Redirect-возврат от провайдера: сами перечитываем статус, query-параметрам
    "успеха" не верим. Итог - редирект на thank-you или обратно в checkout.
    """

    # параметр, в котором провайдер возвращает свою ссылку на платёж
    REFERENCE_PARAMS = {"card": "payment_intent", "wallet": "token"}

    def get(self, request, method: str):
        c = self.container
        order_id = request.query_params.get("order", "")
        reference = request.query_params.get(self.REFERENCE_PARAMS.get(method, ""), "")
        failure_url = f"{c.config.checkout_url}?payment_error=1"

        try:
            result = confirm_payment(
                lifecycle=c.lifecycle,
                gateways=c.gateways,
                order_id=order_id,
                payment_reference=reference,
                source="return",
            )
        except (OrderNotFound, CheckoutInvalid, InvalidTransition, GatewayError) as exc:
            logger.warning("checkout_return_failed", method=method, order_id=order_id, error=str(exc))
            return HttpResponseRedirect(failure_url)

        order = result.order
        if order.status in (Order.STATUS_PAID, Order.STATUS_ON_HOLD) or result.already_finalized:
            return HttpResponseRedirect(thank_you_url(c.config, order))
        logger.info("checkout_return_not_paid", method=method, order_id=order_id, outcome=result.outcome.status)
        return HttpResponseRedirect(failure_url)
