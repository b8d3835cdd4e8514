# apps/orders/domain.py
"""
Неизменяемые снимки заказа, с которыми работает core.

Модель Django (apps.orders.models.Order) - деталь хранения: менеджер заказов
получает и возвращает только OrderSnapshot, а сохраняет изменения
через OrderRepository.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

from apps.orders.logic.status_fsm import PAID_STATUSES
from apps.payments.money import to_minor_units


@dataclass(frozen=True)
class PaymentRef:
    provider: str
    external_id: str

    def __bool__(self) -> bool:
        return bool(self.provider and self.external_id)


@dataclass(frozen=True)
class OrderLine:
    sku: str
    name: str
    qty: int
    unit_price: Decimal
    tax_rate: Decimal
    line_total: Decimal
    product_id: int | None = None


@dataclass(frozen=True)
class OrderDraft:
    """Всё, что нужно репозиторию, чтобы создать заказ в статусе created."""

    session_key: str
    currency: str
    email: str
    lines: tuple[OrderLine, ...]
    shipping_total: Decimal
    discount_total: Decimal
    shipping_address: Mapping[str, Any]
    billing_address: Mapping[str, Any]
    coupon_code: str = ""
    payment_method: str = ""


@dataclass(frozen=True)
class OrderSnapshot:
    id: int
    public_id: UUID
    status: str
    is_temp: bool
    currency: str
    email: str
    lines: tuple[OrderLine, ...]
    subtotal: Decimal
    tax_total: Decimal
    shipping_total: Decimal
    discount_total: Decimal
    total: Decimal
    refunded_total: Decimal
    shipping_address: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    billing_address: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    coupon_code: str = ""
    payment_method: str = ""
    payment_ref: PaymentRef | None = None
    failure_reason: str = ""
    session_key: str = ""
    paid_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.status in PAID_STATUSES

    @property
    def remaining_balance(self) -> Decimal:
        return self.total - self.refunded_total

    @property
    def total_minor(self) -> int:
        return to_minor_units(self.total, self.currency)

    @property
    def refunded_minor(self) -> int:
        return to_minor_units(self.refunded_total, self.currency)


@dataclass(frozen=True)
class StatusChange:
    """Результат выигранного CAS: снимок после перехода и статус, который CAS действительно застал."""

    order: OrderSnapshot
    from_status: str


@dataclass(frozen=True)
class FinalizeResult:
    order: OrderSnapshot
    # True: заказ уже был оплачен кем-то ещё (IdempotencyConflict = успех, side-effects не повторяем)
    already_finalized: bool = False


@dataclass(frozen=True)
class TransitionOutcome:
    order: OrderSnapshot
    changed: bool


@dataclass(frozen=True)
class RefundResult:
    order: OrderSnapshot
    amount: Decimal
    refund_ref: str
    duplicate: bool = False
