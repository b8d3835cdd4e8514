# apps/payments/providers/port.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping, Protocol

from django.utils import timezone

from apps.orders.domain import OrderSnapshot

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_REQUIRES_ACTION = "requires_action"
# принято провайдером, но расчёт вне канала (перевод/мандат/pending capture) -> on_hold
OUTCOME_PENDING = "pending"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class CheckoutData:
    """То, что адаптер получает при initiate: заказ + платёжные данные из формы."""

    method: str
    payment_data: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    return_url: str = ""
    cancel_url: str = ""


@dataclass(frozen=True)
class PaymentHandle:
    provider: str
    external_ref: str
    provider_status: str
    created_at: datetime = field(default_factory=timezone.now)
    # отдаём браузеру (client_secret, approve_url, реквизиты), в БД не храним
    continuation: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    raw: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class PaymentOutcome:
    status: str
    transaction_id: str = ""
    message: str = ""
    continuation: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    raw: Mapping[str, Any] | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == OUTCOME_SUCCEEDED


class GatewayAdapter(Protocol):
    """
    Порт (интерфейс) платёжного шлюза.

    Всё provider-specific (формы запросов, SDK-объекты, continuation)
    живёт внутри адаптера и не протекает в менеджер заказов.
    """

    name: str
    # True: подтверждаем сразу после initiate (прямой дебет, банковский перевод)
    settles_offline: bool

    def initiate(self, checkout: CheckoutData, order: OrderSnapshot) -> PaymentHandle:
        ...

    def confirm(self, handle: PaymentHandle, client_result: Mapping[str, Any] | None = None) -> PaymentOutcome:
        ...

    def refund(self, order: OrderSnapshot, amount: Decimal) -> str:
        ...
