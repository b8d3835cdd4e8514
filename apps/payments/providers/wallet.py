# apps/payments/providers/wallet.py
from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

import structlog

from apps.orders.domain import OrderSnapshot
from apps.payments.api_client import ProviderApiClient
from apps.payments.config import PaymentsConfig
from apps.payments.errors import ApiError, GatewayError, ProviderError
from apps.payments.money import format_amount
from apps.payments.providers.port import (
    OUTCOME_FAILED,
    OUTCOME_PENDING,
    OUTCOME_SUCCEEDED,
    CheckoutData,
    PaymentHandle,
    PaymentOutcome,
)
from core.logging import redact_payload

logger = structlog.get_logger(__name__)


def _money(amount, currency: str) -> dict[str, str]:
    return {"currency_code": currency.upper(), "value": format_amount(amount, currency)}


def first_capture(order_body: Mapping[str, Any]) -> Mapping[str, Any]:
    """purchase_units[0].payments.captures[0] или {}."""
    units = order_body.get("purchase_units") or []
    if not units:
        return {}
    captures = ((units[0] or {}).get("payments") or {}).get("captures") or []
    return captures[0] if captures else {}


def capture_transaction_id(order_body: Mapping[str, Any]) -> str:
    """id капчи, а если его нет - id заказа у провайдера."""
    return str(first_capture(order_body).get("id") or order_body.get("id") or "")


class WalletGateway:
    """
    Redirect-wallet адаптер (orders v2 API).

    initiate -> заказ у провайдера + approve URL;
    confirm  -> явный capture, transaction id берём из ответа capture.
    """

    name = "wallet"
    settles_offline = False

    def __init__(self, api: ProviderApiClient, config: PaymentsConfig):
        self.api = api
        self.config = config

    def build_order_body(self, checkout: CheckoutData, order: OrderSnapshot) -> dict[str, Any]:
        cur = order.currency
        breakdown = {"item_total": _money(order.subtotal, cur)}
        if order.shipping_total:
            breakdown["shipping"] = _money(order.shipping_total, cur)
        if order.tax_total:
            breakdown["tax_total"] = _money(order.tax_total, cur)
        if order.discount_total:
            breakdown["discount"] = _money(order.discount_total, cur)

        unit: dict[str, Any] = {
            "reference_id": str(order.public_id),
            "custom_id": str(order.public_id),
            "description": f"Order {order.public_id}",
            "amount": {**_money(order.total, cur), "breakdown": breakdown},
            "items": [
                {
                    "name": line.name[:127],
                    "sku": line.sku,
                    "quantity": str(line.qty),
                    "unit_amount": _money(line.unit_price, cur),
                }
                for line in order.lines
            ],
        }

        address = order.shipping_address
        if address:
            full_name = f"{address.get('first_name', '')} {address.get('last_name', '')}".strip()
            unit["shipping"] = {
                "name": {"full_name": full_name},
                "address": {
                    "address_line_1": address.get("address_1", ""),
                    "address_line_2": address.get("address_2", ""),
                    "admin_area_2": address.get("city", ""),
                    "postal_code": address.get("postcode", ""),
                    "country_code": str(address.get("country", "")).upper(),
                },
            }

        return {
            "intent": "CAPTURE",
            "purchase_units": [unit],
            "application_context": {
                "return_url": checkout.return_url,
                "cancel_url": checkout.cancel_url,
                "shipping_preference": "SET_PROVIDED_ADDRESS" if address else "NO_SHIPPING",
                "user_action": "PAY_NOW",
            },
        }

    def initiate(self, checkout: CheckoutData, order: OrderSnapshot) -> PaymentHandle:
        body = self._call("v2/checkout/orders", "POST", self.build_order_body(checkout, order))

        approve_url = next(
            (link.get("href") for link in body.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        return PaymentHandle(
            provider=self.name,
            external_ref=str(body["id"]),
            provider_status=str(body.get("status", "")),
            continuation=MappingProxyType({"approve_url": approve_url, "wallet_order_id": body["id"]}),
            raw=redact_payload(body),
        )

    def confirm(self, handle: PaymentHandle, client_result: Mapping[str, Any] | None = None) -> PaymentOutcome:
        try:
            body = self.api.request(
                self.name,
                f"v2/checkout/orders/{handle.external_ref}/capture",
                "POST",
                {},
                headers={"PayPal-Request-Id": f"capture-{handle.external_ref}"},
            ).body
        except ProviderError as exc:
            if exc.code != "ORDER_ALREADY_CAPTURED":
                logger.warning("wallet_capture_failed", wallet_order_id=handle.external_ref, code=exc.code)
                raise GatewayError.from_api_error(exc) from exc
            # уже захвачен другим каналом: читаем состояние, второй capture не делаем
            body = self._call(f"v2/checkout/orders/{handle.external_ref}", "GET")
        except ApiError as exc:
            raise GatewayError.from_api_error(exc) from exc

        return self.evaluate(body)

    def evaluate(self, body: Mapping[str, Any]) -> PaymentOutcome:
        capture = first_capture(body)
        status = str(capture.get("status") or body.get("status") or "").upper()
        raw = redact_payload(dict(body))

        if status == "COMPLETED":
            return PaymentOutcome(OUTCOME_SUCCEEDED, transaction_id=capture_transaction_id(body), raw=raw)
        if status == "PENDING":
            return PaymentOutcome(OUTCOME_PENDING, transaction_id=capture_transaction_id(body), raw=raw)

        reason = (capture.get("status_details") or {}).get("reason") or status or "UNKNOWN"
        return PaymentOutcome(OUTCOME_FAILED, message=f"Wallet capture not completed: {reason}.", raw=raw)

    def refund(self, order: OrderSnapshot, amount: Decimal) -> str:
        capture_id = order.payment_ref.external_id if order.payment_ref else ""
        if not capture_id:
            raise GatewayError("Order has no wallet capture reference.", code="missing_reference")
        body = self._call(
            f"v2/payments/captures/{capture_id}/refund",
            "POST",
            {"amount": _money(amount, order.currency), "note_to_payer": f"Refund for order {order.public_id}"},
        )
        return str(body["id"])

    def _call(self, endpoint: str, method: str, body: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
        try:
            return self.api.request(self.name, endpoint, method, body).body
        except ApiError as exc:
            logger.warning("wallet_gateway_call_failed", endpoint=endpoint, error=str(exc))
            raise GatewayError.from_api_error(exc) from exc
