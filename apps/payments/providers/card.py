# apps/payments/providers/card.py
from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

import structlog

from apps.orders.domain import OrderSnapshot
from apps.payments.api_client import ProviderApiClient
from apps.payments.config import PaymentsConfig
from apps.payments.errors import ApiError, GatewayError
from apps.payments.money import to_minor_units
from apps.payments.providers.port import (
    OUTCOME_FAILED,
    OUTCOME_PENDING,
    OUTCOME_REQUIRES_ACTION,
    OUTCOME_SUCCEEDED,
    CheckoutData,
    PaymentHandle,
    PaymentOutcome,
)
from core.logging import redact_payload

logger = structlog.get_logger(__name__)

# любой из этих статусов (или непустой next_action) = нужен SCA/3-D Secure challenge
SCA_STATUSES = frozenset({"requires_action", "requires_confirmation", "requires_payment_method"})


def is_sca_required(intent: Mapping[str, Any]) -> bool:
    return bool(intent.get("next_action")) or intent.get("status") in SCA_STATUSES


def transaction_id_for(intent: Mapping[str, Any]) -> str:
    latest = intent.get("latest_charge")
    if isinstance(latest, Mapping):
        latest = latest.get("id")
    if latest:
        return str(latest)
    charges = (intent.get("charges") or {}).get("data") or []
    if charges and charges[0].get("id"):
        return str(charges[0]["id"])
    return str(intent.get("id") or "")


class CardGateway:
    """
    Card/SCA адаптер (payment intents API).

    initiate -> payment intent на сумму заказа в minor units;
    confirm  -> сервер сам перечитывает (или подтверждает) intent, клиенту не верим.
    """

    name = "card"
    settles_offline = False

    def __init__(self, api: ProviderApiClient, config: PaymentsConfig):
        self.api = api
        self.config = config

    def initiate(self, checkout: CheckoutData, order: OrderSnapshot) -> PaymentHandle:
        caps = self.config.capabilities
        params: dict[str, Any] = {
            "amount": to_minor_units(order.total, order.currency),
            "currency": order.currency.lower(),
            "description": f"Order {order.public_id}",
            "metadata": {"order_id": str(order.public_id)},
        }
        if order.email:
            params["receipt_email"] = order.email
        if caps.card_automatic_payment_methods:
            params["automatic_payment_methods"] = {"enabled": True}
        else:
            params["payment_method_types"] = ["card"]
        if caps.card_sca_support:
            params["payment_method_options"] = {"card": {"request_three_d_secure": "automatic"}}

        intent = self._call("payment_intents", "POST", params)

        provider_settings = self.config.provider(self.name)
        return PaymentHandle(
            provider=self.name,
            external_ref=str(intent["id"]),
            provider_status=str(intent.get("status", "")),
            continuation=MappingProxyType(
                {
                    "client_secret": intent.get("client_secret"),
                    "publishable_key": provider_settings.publishable_key,
                    "requires_action": is_sca_required(intent),
                }
            ),
            raw=redact_payload(intent),
        )

    def confirm(self, handle: PaymentHandle, client_result: Mapping[str, Any] | None = None) -> PaymentOutcome:
        client_result = client_result or {}
        payment_method = client_result.get("payment_method")
        if payment_method:
            intent = self._call(
                f"payment_intents/{handle.external_ref}/confirm",
                "POST",
                {"payment_method": payment_method, "return_url": client_result.get("return_url") or None},
            )
        else:
            intent = self._call(f"payment_intents/{handle.external_ref}", "GET")
        return self.evaluate(intent)

    def evaluate(self, intent: Mapping[str, Any]) -> PaymentOutcome:
        status = intent.get("status", "")
        raw = redact_payload(dict(intent))

        if status == "succeeded":
            return PaymentOutcome(OUTCOME_SUCCEEDED, transaction_id=transaction_id_for(intent), raw=raw)

        error = intent.get("last_payment_error") or {}
        # отказ банка возвращает intent в requires_payment_method: это не challenge
        if is_sca_required(intent) and not (status == "requires_payment_method" and error):
            return PaymentOutcome(
                OUTCOME_REQUIRES_ACTION,
                message="Additional authentication required.",
                continuation=MappingProxyType(
                    {"client_secret": intent.get("client_secret"), "next_action": intent.get("next_action")}
                ),
                raw=raw,
            )

        if status == "processing":
            return PaymentOutcome(OUTCOME_PENDING, transaction_id=str(intent.get("id", "")), raw=raw)

        message = error.get("message") or intent.get("cancellation_reason") or f"Payment {status or 'failed'}."
        return PaymentOutcome(OUTCOME_FAILED, message=str(message), raw=raw)

    def refund(self, order: OrderSnapshot, amount: Decimal) -> str:
        ref = order.payment_ref.external_id if order.payment_ref else ""
        if not ref:
            raise GatewayError("Order has no card payment reference.", code="missing_reference")
        target = {"payment_intent": ref} if ref.startswith("pi_") else {"charge": ref}
        refund = self._call(
            "refunds",
            "POST",
            {**target, "amount": to_minor_units(amount, order.currency), "metadata": {"order_id": str(order.public_id)}},
        )
        return str(refund["id"])

    def _call(self, endpoint: str, method: str, body: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
        try:
            return self.api.request(self.name, endpoint, method, body).body
        except ApiError as exc:
            logger.warning("card_gateway_call_failed", endpoint=endpoint, error=str(exc))
            raise GatewayError.from_api_error(exc) from exc
