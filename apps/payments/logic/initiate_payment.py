# apps/payments/logic/initiate_payment.py
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping
from urllib.parse import urlencode

import structlog

from apps.orders.domain import OrderSnapshot
from apps.orders.errors import InvalidTransition
from apps.orders.logic.lifecycle import OrderLifecycleManager
from apps.orders.models import Order
from apps.payments.config import PaymentsConfig
from apps.payments.errors import GatewayError
from apps.payments.logic.confirm_payment import PaymentResult, apply_outcome
from apps.payments.logic.handles import record_handle
from apps.payments.providers.port import CheckoutData, PaymentHandle
from apps.payments.providers.registry import GatewayRegistry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class InitiateResult:
    order: OrderSnapshot
    handle: PaymentHandle
    # для settles_offline адаптеров: результат немедленного confirm
    result: PaymentResult | None = None

    @property
    def continuation(self) -> Mapping[str, Any]:
        if self.result is not None and self.result.outcome.continuation:
            return self.result.outcome.continuation
        return self.handle.continuation


def return_urls(config: PaymentsConfig, *, method: str, order: OrderSnapshot) -> tuple[str, str]:
    query = urlencode({"order": str(order.public_id)})
    return_url = f"{config.return_url.rstrip('/')}/{method}/?{query}"
    cancel_url = f"{config.cancel_url}?{query}" if config.cancel_url else return_url
    return return_url, cancel_url


def initiate_payment(
    *,
    lifecycle: OrderLifecycleManager,
    gateways: GatewayRegistry,
    config: PaymentsConfig,
    order_id,
    method: str,
    payment_data: Mapping[str, Any] | None = None,
    source: str = "checkout",
    actor=None,
) -> InitiateResult:
    """
    Use-case: начать оплату заказа выбранным шлюзом.

    - PaymentDataInvalid от адаптера пробрасываем: заказ не меняется;
    - GatewayError retryable: заказ остаётся pending_payment, покупатель может повторить;
    - GatewayError не retryable: заказ -> failed с сообщением провайдера;
    - settles_offline (direct debit, bank transfer): confirm сразу, заказ -> on_hold.
    """
    adapter = gateways.get(method)
    order = lifecycle.repository.get(order_id)
    if order.status != Order.STATUS_PENDING_PAYMENT:
        raise InvalidTransition(order.status, Order.STATUS_PENDING_PAYMENT, "Order is not awaiting payment.")

    return_url, cancel_url = return_urls(config, method=method, order=order)
    checkout = CheckoutData(
        method=method,
        payment_data=MappingProxyType(dict(payment_data or {})),
        return_url=return_url,
        cancel_url=cancel_url,
    )

    try:
        handle = adapter.initiate(checkout, order)
    except GatewayError as exc:
        logger.warning(
            "payment_initiate_failed",
            order_id=str(order.public_id),
            provider=method,
            retryable=exc.retryable,
            code=exc.code,
        )
        if not exc.retryable:
            lifecycle.mark_failed(order.public_id, reason=str(exc) or "Payment provider rejected the payment.", source=source)
        raise

    record_handle(order=order, handle=handle, actor=actor)
    logger.info(
        "payment_initiated",
        order_id=str(order.public_id),
        provider=handle.provider,
        external_ref=handle.external_ref,
        provider_status=handle.provider_status,
    )

    result = None
    if adapter.settles_offline:
        outcome = adapter.confirm(handle, None)
        result = apply_outcome(
            lifecycle=lifecycle,
            order_id=order.public_id,
            handle=handle,
            outcome=outcome,
            source=source,
            actor=actor,
        )
        order = result.order
    else:
        order = lifecycle.repository.get(order.public_id)

    return InitiateResult(order=order, handle=handle, result=result)
