# apps/payments/providers/manual.py
from __future__ import annotations

import uuid
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

from apps.orders.domain import OrderSnapshot
from apps.payments.config import PaymentsConfig
from apps.payments.money import format_amount
from apps.payments.providers.port import OUTCOME_PENDING, CheckoutData, PaymentHandle, PaymentOutcome


class ManualTransferGateway:
    """
    Ручной банковский перевод.

    Провайдера нет: успех initiate определён по смыслу. Генерируем читаемую ссылку
    для назначения платежа, заказ уходит в on_hold до подтверждения
    (staff settle или импорт банковских транзакций).
    """

    name = "bank_transfer"
    settles_offline = True

    def __init__(self, config: PaymentsConfig):
        self.config = config

    def reference_for(self, order: OrderSnapshot) -> str:
        return f"{self.config.reference_prefix}{order.id}"

    def initiate(self, checkout: CheckoutData, order: OrderSnapshot) -> PaymentHandle:
        reference = self.reference_for(order)
        bank = self.config.bank
        return PaymentHandle(
            provider=self.name,
            external_ref=reference,
            provider_status="awaiting_transfer",
            continuation=MappingProxyType(
                {
                    "reference": reference,
                    "amount": format_amount(order.total, order.currency),
                    "currency": order.currency,
                    "account_name": bank.account_name,
                    "iban": bank.iban,
                    "bic": bank.bic,
                    "bank_name": bank.bank_name,
                }
            ),
        )

    def confirm(self, handle: PaymentHandle, client_result: Mapping[str, Any] | None = None) -> PaymentOutcome:
        return PaymentOutcome(
            OUTCOME_PENDING,
            transaction_id=handle.external_ref,
            message="Awaiting bank transfer.",
            continuation=handle.continuation,
        )

    def refund(self, order: OrderSnapshot, amount: Decimal) -> str:
        return f"MANUAL-REFUND-{uuid.uuid4().hex[:12].upper()}"
