# apps/webhooks/translators.py
"""
Provider payload -> список Instruction.

Здесь (и только здесь) живут форматы событий провайдеров. Reconciler
получает нормализованные инструкции и ничего не знает о полях payload'а.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from apps.orders.domain import PaymentRef
from apps.payments.money import from_minor_units
from apps.payments.providers.card import transaction_id_for
from apps.payments.providers.wallet import capture_transaction_id

FINALIZE = "finalize"
# bank batch: finalize только при точном совпадении суммы
FINALIZE_EXACT = "finalize_exact"
ON_HOLD = "on_hold"
FAIL = "fail"
CANCEL = "cancel"
RECORD_REFUND = "record_refund"
# card charge.refunded: amount = накопленная сумма возвратов у провайдера
RECORD_CUMULATIVE_REFUND = "record_cumulative_refund"
# wallet capture reversed: возврат всего остатка (или failed, если не оплачен)
REVERSE = "reverse"


class PayloadInvalid(ValueError):
    """Структура события не та, которую провайдер обещает. Ответ 400."""


@dataclass(frozen=True)
class WebhookEvent:
    provider: str
    event_type: str
    payload: Mapping[str, Any]
    signature: str = ""
    order_id: str | None = None


@dataclass(frozen=True)
class Instruction:
    action: str
    # кандидаты для поиска заказа, по порядку
    refs: tuple[PaymentRef, ...] = ()
    order_hint: str | None = None
    transaction_id: str = ""
    amount: Decimal | None = None
    currency: str = ""
    refund_ref: str = ""
    reason: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)


def _refs(provider: str, *ids: Any) -> tuple[PaymentRef, ...]:
    seen: list[PaymentRef] = []
    for value in ids:
        if value:
            ref = PaymentRef(provider, str(value))
            if ref not in seen:
                seen.append(ref)
    return tuple(seen)


# Order.total: DecimalField(max_digits=12, decimal_places=2)
MAX_AMOUNT = Decimal("9999999999.99")


def _finite(value: Any, *, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise PayloadInvalid(f"{field_name} is not a valid amount.")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise PayloadInvalid(f"{field_name} is not a valid amount.")
    if not amount.is_finite():
        raise PayloadInvalid(f"{field_name} is not a valid amount.")
    return amount


def _decimal(value: Any, *, field_name: str) -> Decimal:
    amount = _finite(value, field_name=field_name)
    if abs(amount) > MAX_AMOUNT:
        raise PayloadInvalid(f"{field_name} is out of range.")
    return amount


def _minor_units(value: Any, *, field_name: str) -> int:
    amount = _finite(value, field_name=field_name)
    # minor units: целое, не больше MAX_AMOUNT в валюте с тремя знаками
    if amount != amount.to_integral_value() or abs(amount) > MAX_AMOUNT.scaleb(3):
        raise PayloadInvalid(f"{field_name} must be an integer amount in minor units.")
    return int(amount)


# --- card ------------------------------------------------------------------------


def card_event(payload: Mapping[str, Any], signature: str = "") -> WebhookEvent:
    if not isinstance(payload, Mapping) or not payload.get("type"):
        raise PayloadInvalid("Card event must carry a type.")
    obj = ((payload.get("data") or {}).get("object")) or {}
    if not isinstance(obj, Mapping):
        raise PayloadInvalid("Card event data.object must be an object.")
    return WebhookEvent(
        provider="card",
        event_type=str(payload["type"]),
        payload=payload,
        signature=signature,
        order_id=(obj.get("metadata") or {}).get("order_id"),
    )


def translate_card(event: WebhookEvent) -> list[Instruction]:
    obj = event.payload["data"]["object"]
    hint = event.order_id

    if event.event_type.startswith("payment_intent."):
        refs = _refs("card", obj.get("id"), obj.get("latest_charge") if isinstance(obj.get("latest_charge"), str) else None)
        if event.event_type == "payment_intent.succeeded":
            return [Instruction(FINALIZE, refs, hint, transaction_id=transaction_id_for(obj))]
        if event.event_type == "payment_intent.processing":
            return [Instruction(ON_HOLD, refs, hint, transaction_id=str(obj.get("id") or ""), reason="Card payment processing.")]
        if event.event_type == "payment_intent.payment_failed":
            error = obj.get("last_payment_error") or {}
            return [Instruction(FAIL, refs, hint, reason=str(error.get("message") or "Card payment failed."))]
        if event.event_type == "payment_intent.canceled":
            reason = obj.get("cancellation_reason") or "Card payment cancelled."
            return [Instruction(CANCEL, refs, hint, reason=str(reason))]

    if event.event_type == "charge.succeeded":
        refs = _refs("card", obj.get("id"), obj.get("payment_intent"))
        return [Instruction(FINALIZE, refs, hint, transaction_id=str(obj.get("id") or ""))]

    if event.event_type == "charge.failed":
        if not obj.get("id"):
            raise PayloadInvalid("charge.failed must carry a charge id.")
        reason = str(obj.get("failure_message") or "Card charge failed.")
        if obj.get("failure_code"):
            reason = f"{reason} (code: {obj['failure_code']})"
        return [Instruction(FAIL, _refs("card", obj["id"], obj.get("payment_intent")), hint, reason=reason)]

    if event.event_type == "charge.refunded":
        currency = str(obj.get("currency") or "").upper()
        if obj.get("amount_refunded") is None or not currency:
            raise PayloadInvalid("charge.refunded must carry amount_refunded and currency.")
        refunded_minor = _minor_units(obj["amount_refunded"], field_name="amount_refunded")
        refunds = (obj.get("refunds") or {}).get("data") or []
        refund_ref = str(refunds[0].get("id")) if refunds and refunds[0].get("id") else f"{obj.get('id')}:{refunded_minor}"
        return [
            Instruction(
                RECORD_CUMULATIVE_REFUND,
                _refs("card", obj.get("id"), obj.get("payment_intent")),
                hint,
                amount=from_minor_units(refunded_minor, currency),
                currency=currency,
                refund_ref=refund_ref,
                reason="Refunded at the card provider.",
            )
        ]

    return []


# --- wallet ----------------------------------------------------------------------


def wallet_event(payload: Mapping[str, Any], signature: str = "") -> WebhookEvent:
    if not isinstance(payload, Mapping) or not payload.get("event_type"):
        raise PayloadInvalid("Wallet event must carry an event_type.")
    resource = payload.get("resource") or {}
    if not isinstance(resource, Mapping):
        raise PayloadInvalid("Wallet event resource must be an object.")

    custom_id = resource.get("custom_id")
    if not custom_id:
        units = resource.get("purchase_units") or []
        if units:
            custom_id = (units[0] or {}).get("custom_id") or (units[0] or {}).get("reference_id")
    return WebhookEvent(
        provider="wallet",
        event_type=str(payload["event_type"]),
        payload=payload,
        signature=signature,
        order_id=custom_id,
    )


def _related_wallet_order_id(resource: Mapping[str, Any]) -> str | None:
    related = ((resource.get("supplementary_data") or {}).get("related_ids")) or {}
    return related.get("order_id")


def _capture_id_from_links(resource: Mapping[str, Any]) -> str | None:
    # у refund-ресурса ссылка rel="up" ведёт на capture
    for link in resource.get("links") or []:
        href = str(link.get("href") or "")
        if link.get("rel") == "up" and "/captures/" in href:
            return href.rstrip("/").rsplit("/", 1)[-1]
    return None


def translate_wallet(event: WebhookEvent) -> list[Instruction]:
    resource = event.payload.get("resource") or {}
    hint = event.order_id
    kind = event.event_type

    if kind.startswith("PAYMENT.CAPTURE."):
        capture_id = resource.get("id")
        refs = _refs("wallet", capture_id, _related_wallet_order_id(resource))
        if kind == "PAYMENT.CAPTURE.COMPLETED":
            return [Instruction(FINALIZE, refs, hint, transaction_id=str(capture_id or ""))]
        if kind == "PAYMENT.CAPTURE.PENDING":
            reason = (resource.get("status_details") or {}).get("reason") or "Wallet capture pending."
            return [Instruction(ON_HOLD, refs, hint, reason=str(reason))]
        if kind == "PAYMENT.CAPTURE.DENIED":
            reason = (resource.get("status_details") or {}).get("reason") or "DENIED"
            return [Instruction(FAIL, refs, hint, reason=f"Wallet capture denied: {reason}.")]
        if kind == "PAYMENT.CAPTURE.REVERSED":
            return [Instruction(REVERSE, refs, hint, refund_ref=str(capture_id or ""), reason="Wallet capture reversed.")]
        if kind == "PAYMENT.CAPTURE.REFUNDED":
            amount = resource.get("amount") or {}
            if not amount.get("value") or not resource.get("id"):
                raise PayloadInvalid("PAYMENT.CAPTURE.REFUNDED must carry a refund id and amount.")
            capture_ref = _capture_id_from_links(resource)
            return [
                Instruction(
                    RECORD_REFUND,
                    _refs("wallet", capture_ref, capture_id, _related_wallet_order_id(resource)),
                    hint,
                    amount=_decimal(amount["value"], field_name="resource.amount.value"),
                    currency=str(amount.get("currency_code") or "").upper(),
                    refund_ref=str(resource["id"]),
                    reason="Refunded at the wallet provider.",
                )
            ]

    if kind.startswith("CHECKOUT.ORDER."):
        refs = _refs("wallet", resource.get("id"))
        if kind == "CHECKOUT.ORDER.APPROVED":
            return [Instruction(ON_HOLD, refs, hint, reason="Wallet order approved by the payer.")]
        if kind == "CHECKOUT.ORDER.COMPLETED":
            return [Instruction(FINALIZE, refs, hint, transaction_id=capture_transaction_id(resource))]

    return []


# --- bank transfer ----------------------------------------------------------------


def bank_event(payload: Mapping[str, Any], signature: str = "") -> WebhookEvent:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("transactions"), list):
        raise PayloadInvalid("Bank import must carry a transactions list.")
    return WebhookEvent(provider="bank_transfer", event_type="transactions.imported", payload=payload, signature=signature)


def translate_bank(event: WebhookEvent) -> list[Instruction]:
    instructions = []
    for index, tx in enumerate(event.payload["transactions"]):
        if not isinstance(tx, Mapping):
            raise PayloadInvalid(f"transactions[{index}] must be an object.")
        reference = str(tx.get("reference") or "").strip().upper()
        if not reference or tx.get("amount") in (None, ""):
            raise PayloadInvalid(f"transactions[{index}] must carry reference and amount.")
        instructions.append(
            Instruction(
                FINALIZE_EXACT,
                _refs("bank_transfer", reference),
                None,
                transaction_id=reference,
                amount=_decimal(tx["amount"], field_name=f"transactions[{index}].amount"),
                currency=str(tx.get("currency") or "").upper(),
                metadata={"date": tx.get("date")},
            )
        )
    return instructions


TRANSLATORS = {
    "card": (card_event, translate_card),
    "wallet": (wallet_event, translate_wallet),
    "bank_transfer": (bank_event, translate_bank),
}
