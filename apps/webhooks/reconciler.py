# apps/webhooks/reconciler.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Mapping

import structlog

from apps.orders.domain import OrderSnapshot, PaymentRef
from apps.orders.errors import InvalidTransition, OrderNotFound, RefundRejected
from apps.orders.logic.lifecycle import OrderLifecycleManager
from apps.payments.config import PaymentsConfig
from apps.payments.errors import SignatureError
from apps.payments.logic.handles import record_handle_event
from apps.payments.money import to_minor_units
from apps.webhooks import translators as t
from apps.webhooks.verifiers import WebhookVerifier

logger = structlog.get_logger(__name__)

APPLIED = "applied"
# событие принято, но менять было нечего (дубль, неизвестный тип, бизнес-конфликт)
ACKNOWLEDGED = "acknowledged"
UNRESOLVED = "unresolved"
REJECTED = "rejected"

# приоритет для итогового состояния батча
_STATE_RANK = {APPLIED: 3, UNRESOLVED: 2, ACKNOWLEDGED: 1}

# capability, без которой webhook провайдера не принимаем
WEBHOOK_CAPABILITY = {
    "card": "card_webhooks",
    "wallet": "wallet_webhooks",
    "bank_transfer": "bank_transfer_enabled",
}


@dataclass(frozen=True)
class ReconcileResult:
    state: str
    order_id: str | None = None
    detail: str = ""
    items: tuple["ReconcileResult", ...] = ()


class WebhookRejected(Exception):
    """Подпись/структура/конфигурация: ответ 400, заказ не трогаем."""


class WebhookReconciler:
    """
    received -> signature_verified -> order_resolved -> applied,
    с выходом в rejected на любом из первых шагов.

    Все переходы идут через идемпотентные операции OrderLifecycleManager,
    поэтому повторная доставка безопасна без отдельного журнала событий.
    """

    def __init__(
        self,
        *,
        lifecycle: OrderLifecycleManager,
        verifiers: Mapping[str, WebhookVerifier],
        config: PaymentsConfig,
        translators=None,
    ):
        self.lifecycle = lifecycle
        self.verifiers = verifiers
        self.config = config
        self.translators = translators or t.TRANSLATORS

    def handle(self, provider: str, payload: bytes, headers: Mapping[str, str]) -> ReconcileResult:
        log = logger.bind(provider=provider)

        capability = WEBHOOK_CAPABILITY.get(provider)
        if capability is None or not self.config.capability(capability):
            log.warning("webhook_rejected_disabled")
            raise WebhookRejected(f"Webhooks for provider '{provider}' are not enabled.")

        self._verify(provider, payload, headers, log)

        try:
            data = json.loads(payload)
        except ValueError:
            log.warning("webhook_rejected_payload", reason="invalid_json")
            raise WebhookRejected("Payload is not valid JSON.")

        parse, translate = self.translators[provider]
        try:
            event = parse(data, self._signature(provider, headers))
            instructions = translate(event)
        except t.PayloadInvalid as exc:
            log.warning("webhook_rejected_payload", reason=str(exc))
            raise WebhookRejected(str(exc))

        log = log.bind(event_type=event.event_type)
        if not instructions:
            log.info("webhook_event_ignored")
            return ReconcileResult(ACKNOWLEDGED, detail="Event type not handled.")

        results = tuple(self._reconcile(event, instruction, log) for instruction in instructions)
        if len(results) == 1:
            return results[0]
        state = max((r.state for r in results), key=lambda s: _STATE_RANK[s])
        return ReconcileResult(state, items=results)

    # --- gates ------------------------------------------------------------------

    def _verify(self, provider, payload, headers, log) -> None:
        if self.config.signature_bypass_active:
            log.warning("webhook_signature_verification_skipped", risk="debug bypass enabled")
            return
        verifier = self.verifiers.get(provider)
        if verifier is None:
            log.error("webhook_signature_rejected", reason="verifier_not_configured")
            raise WebhookRejected(f"Webhook verification for provider '{provider}' is not configured.")
        try:
            verifier.verify(payload, headers)
        except SignatureError as exc:
            log.error("webhook_signature_rejected", reason=str(exc))
            raise WebhookRejected(str(exc))
        log.info("webhook_signature_verified")

    @staticmethod
    def _signature(provider: str, headers: Mapping[str, str]) -> str:
        if provider == "card":
            return headers.get("Stripe-Signature", "")
        if provider == "wallet":
            return headers.get("paypal-transmission-sig", "")
        return ""

    def resolve_order(self, instruction: t.Instruction) -> OrderSnapshot | None:
        repo = self.lifecycle.repository
        for ref in instruction.refs:
            order = repo.find_by_payment_ref(ref)
            if order is not None:
                return order
        if instruction.order_hint:
            try:
                return repo.get(instruction.order_hint)
            except OrderNotFound:
                return None
        return None

    # --- dispatch ---------------------------------------------------------------

    def _reconcile(self, event: t.WebhookEvent, instruction: t.Instruction, log) -> ReconcileResult:
        order = self.resolve_order(instruction)
        if order is None:
            log.warning(
                "webhook_order_unresolved",
                refs=[r.external_id for r in instruction.refs],
                order_hint=instruction.order_hint,
            )
            return ReconcileResult(UNRESOLVED, detail="Order not found.")

        order_id = str(order.public_id)
        log = log.bind(order_id=order_id, action=instruction.action)
        for ref in instruction.refs:
            record_handle_event(
                provider=ref.provider,
                external_ref=ref.external_id,
                action="webhook",
                to_status=event.event_type,
                metadata={"event_type": event.event_type},
            )

        try:
            changed = self._apply(event.provider, instruction, order, log)
        except (InvalidTransition, RefundRejected) as exc:
            # бизнес-конфликт (например failed для оплаченного заказа): подтверждаем, не ошибка
            log.info("webhook_business_conflict", order_status=order.status, reason=str(exc))
            return ReconcileResult(ACKNOWLEDGED, order_id=order_id, detail=str(exc))

        if changed:
            log.info("webhook_applied")
            return ReconcileResult(APPLIED, order_id=order_id)
        log.info("webhook_no_change", order_status=order.status)
        return ReconcileResult(ACKNOWLEDGED, order_id=order_id)

    def _apply(self, provider: str, ins: t.Instruction, order: OrderSnapshot, log) -> bool:
        lc = self.lifecycle
        source = "webhook"

        if ins.action == t.FINALIZE:
            ref = PaymentRef(provider, ins.transaction_id or (ins.refs[0].external_id if ins.refs else ""))
            return not lc.finalize(order.public_id, ref, source=source).already_finalized

        if ins.action == t.FINALIZE_EXACT:
            if ins.currency and ins.currency != order.currency:
                log.warning("bank_transaction_currency_mismatch", currency=ins.currency, expected=order.currency)
                return False
            if to_minor_units(ins.amount, order.currency) != order.total_minor:
                log.warning("bank_transaction_amount_mismatch", amount=str(ins.amount), expected=str(order.total))
                return False
            ref = PaymentRef(provider, ins.transaction_id)
            return not lc.finalize(order.public_id, ref, source=source).already_finalized

        if ins.action == t.ON_HOLD:
            ref = PaymentRef(provider, ins.transaction_id) if ins.transaction_id else None
            return lc.mark_on_hold(order.public_id, payment_ref=ref, reason=ins.reason, source=source).changed

        if ins.action == t.FAIL:
            if order.is_paid:
                raise InvalidTransition(order.status, "failed", "Failure event for an already paid order.")
            return lc.mark_failed(order.public_id, reason=ins.reason, source=source).changed

        if ins.action == t.CANCEL:
            if order.is_paid:
                raise InvalidTransition(order.status, "cancelled", "Cancel event for an already paid order.")
            return lc.cancel(order.public_id, reason=ins.reason, source=source).changed

        if ins.action == t.RECORD_REFUND:
            if ins.currency and ins.currency != order.currency:
                raise RefundRejected(f"Refund currency {ins.currency} does not match order currency.")
            return not lc.record_refund(
                order.public_id, ins.amount, refund_ref=ins.refund_ref, reason=ins.reason, source=source
            ).duplicate

        if ins.action == t.RECORD_CUMULATIVE_REFUND:
            delta_minor = to_minor_units(ins.amount, order.currency) - order.refunded_minor
            if delta_minor <= 0:
                # всё уже учтено (дубль или возврат, сделанный через нас)
                return False
            delta = ins.amount - order.refunded_total
            return not lc.record_refund(
                order.public_id, delta, refund_ref=ins.refund_ref, reason=ins.reason, source=source
            ).duplicate

        if ins.action == t.REVERSE:
            if order.is_paid:
                if order.remaining_balance <= 0:
                    return False
                return not lc.record_refund(
                    order.public_id,
                    order.remaining_balance,
                    refund_ref=f"reversal:{ins.refund_ref}",
                    reason=ins.reason,
                    source=source,
                ).duplicate
            return lc.mark_failed(order.public_id, reason=ins.reason, source=source).changed

        log.warning("webhook_unknown_instruction")
        return False
