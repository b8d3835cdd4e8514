# apps/payments/logic/confirm_payment.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import structlog

from apps.orders.domain import OrderSnapshot, PaymentRef
from apps.orders.errors import CheckoutInvalid
from apps.orders.logic.lifecycle import OrderLifecycleManager
from apps.payments.errors import GatewayError
from apps.payments.logic.handles import active_handle, record_handle_event, to_handle
from apps.payments.providers.port import (
    OUTCOME_FAILED,
    OUTCOME_PENDING,
    OUTCOME_REQUIRES_ACTION,
    OUTCOME_SUCCEEDED,
    PaymentHandle,
    PaymentOutcome,
)
from apps.payments.providers.registry import GatewayRegistry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    order: OrderSnapshot
    outcome: PaymentOutcome
    # True: заказ уже был оплачен другим каналом, side-effects не повторялись
    already_finalized: bool = False


def apply_outcome(
    *,
    lifecycle: OrderLifecycleManager,
    order_id,
    handle: PaymentHandle,
    outcome: PaymentOutcome,
    source: str,
    actor=None,
) -> PaymentResult:
    """
    PaymentOutcome -> переход заказа. Общая точка для checkout, confirm и return.

    succeeded       -> finalize (ref = transaction id или external ref handle'а)
    pending         -> on_hold
    requires_action -> без изменений, continuation уходит клиенту
    failed          -> failed с сообщением провайдера
    """
    record_handle_event(
        provider=handle.provider,
        external_ref=handle.external_ref,
        action="confirm",
        to_status=outcome.status,
        raw=outcome.raw,
        actor=actor,
        metadata={"source": source, "transaction_id": outcome.transaction_id},
    )

    if outcome.status == OUTCOME_SUCCEEDED:
        ref = PaymentRef(handle.provider, outcome.transaction_id or handle.external_ref)
        finalized = lifecycle.finalize(order_id, ref, source=source, actor=actor)
        return PaymentResult(order=finalized.order, outcome=outcome, already_finalized=finalized.already_finalized)

    if outcome.status == OUTCOME_PENDING:
        ref = PaymentRef(handle.provider, handle.external_ref)
        held = lifecycle.mark_on_hold(
            order_id,
            payment_ref=ref,
            reason=outcome.message or "Payment accepted, awaiting settlement.",
            source=source,
        )
        return PaymentResult(order=held.order, outcome=outcome)

    if outcome.status == OUTCOME_FAILED:
        current = lifecycle.repository.get(order_id)
        if current.is_paid:
            # другой канал уже оплатил заказ: поздний failed игнорируем
            logger.info("late_failure_ignored", order_id=str(current.public_id), source=source)
            return PaymentResult(order=current, outcome=outcome, already_finalized=True)
        failed = lifecycle.mark_failed(order_id, reason=outcome.message or "Payment failed.", source=source)
        return PaymentResult(order=failed.order, outcome=outcome)

    if outcome.status != OUTCOME_REQUIRES_ACTION:
        logger.warning("unknown_payment_outcome", status=outcome.status, provider=handle.provider)
    return PaymentResult(order=lifecycle.repository.get(order_id), outcome=outcome)


def confirm_payment(
    *,
    lifecycle: OrderLifecycleManager,
    gateways: GatewayRegistry,
    order_id,
    payment_reference: str = "",
    client_result: Mapping[str, Any] | None = None,
    source: str,
    actor=None,
) -> PaymentResult:
    """
    Use-case: синхронное подтверждение (браузер) и redirect-return.

    Клиентскому "успех" не верим: статус всегда перечитывается у провайдера
    через адаптер. Уже оплаченный заказ -> already_finalized, провайдера не дёргаем.
    """
    order = lifecycle.repository.get(order_id)

    row = active_handle(order)
    if row is None:
        raise CheckoutInvalid({"payment_reference": ["No payment in progress for this order."]})
    if payment_reference and payment_reference != row.external_ref:
        # старый/чужой intent: подтверждаем только активную попытку
        raise CheckoutInvalid({"payment_reference": ["Payment reference does not match the active payment."]})

    handle = to_handle(row)
    if order.is_paid:
        logger.info("confirm_on_paid_order", order_id=str(order.public_id), source=source)
        return PaymentResult(
            order=order,
            outcome=PaymentOutcome(OUTCOME_SUCCEEDED, transaction_id=order.payment_ref.external_id if order.payment_ref else ""),
            already_finalized=True,
        )

    adapter = gateways.get(handle.provider)
    try:
        outcome = adapter.confirm(handle, client_result)
    except GatewayError as exc:
        logger.warning(
            "payment_confirm_failed",
            order_id=str(order.public_id),
            provider=handle.provider,
            retryable=exc.retryable,
            code=exc.code,
        )
        if not exc.retryable:
            current = lifecycle.repository.get(order.public_id)
            if not current.is_paid:
                lifecycle.mark_failed(order.public_id, reason=exc.message or "Payment provider rejected the payment.", source=source)
        raise

    logger.info(
        "payment_confirmed",
        order_id=str(order.public_id),
        provider=handle.provider,
        outcome=outcome.status,
        transaction_id=outcome.transaction_id,
        source=source,
    )
    return apply_outcome(
        lifecycle=lifecycle,
        order_id=order.public_id,
        handle=handle,
        outcome=outcome,
        source=source,
        actor=actor,
    )
