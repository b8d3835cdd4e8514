# apps/checkout/state.py
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping

REQUIRED_ADDRESS_FIELDS = ("first_name", "last_name", "address_1", "postcode", "city", "country")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class CartLine:
    sku: str
    qty: int


def _frozen(data: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType({k: v for k, v in (data or {}).items() if v is not None})


@dataclass(frozen=True)
class CheckoutState:
    """
    Состояние формы checkout для одной сессии.

    Меняет его только форма (state endpoint); core читает и очищает.
    """

    email: str = ""
    shipping_address: Mapping[str, Any] = field(default_factory=lambda: _frozen({}))
    billing_address: Mapping[str, Any] = field(default_factory=lambda: _frozen({}))
    billing_enabled: bool = False
    payment_method: str = ""
    coupon_code: str = ""
    items: tuple[CartLine, ...] = ()
    errors: tuple[str, ...] = ()
    temp_order_id: str = ""

    @property
    def effective_billing_address(self) -> Mapping[str, Any]:
        return self.billing_address if self.billing_enabled else self.shipping_address

    @property
    def is_empty(self) -> bool:
        return self == CheckoutState()

    def with_changes(self, **changes) -> "CheckoutState":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "shipping_address": dict(self.shipping_address),
            "billing_address": dict(self.billing_address),
            "billing_enabled": self.billing_enabled,
            "payment_method": self.payment_method,
            "coupon_code": self.coupon_code,
            "items": [{"sku": line.sku, "qty": line.qty} for line in self.items],
            "errors": list(self.errors),
            "temp_order_id": self.temp_order_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "CheckoutState":
        data = data or {}
        return cls(
            email=str(data.get("email") or ""),
            shipping_address=_frozen(data.get("shipping_address")),
            billing_address=_frozen(data.get("billing_address")),
            billing_enabled=bool(data.get("billing_enabled", False)),
            payment_method=str(data.get("payment_method") or ""),
            coupon_code=str(data.get("coupon_code") or "").strip(),
            items=tuple(
                CartLine(sku=str(it["sku"]), qty=int(it.get("qty", 1)))
                for it in (data.get("items") or [])
                if it.get("sku")
            ),
            errors=tuple(str(e) for e in (data.get("errors") or [])),
            temp_order_id=str(data.get("temp_order_id") or ""),
        )


def _missing_fields(address: Mapping[str, Any]) -> list[str]:
    return [f for f in REQUIRED_ADDRESS_FIELDS if not str(address.get(f) or "").strip()]


def validate_checkout_state(state: CheckoutState, *, enabled_methods: Iterable[str]) -> dict[str, list[str]]:
    """
    Проверки перед materialize заказа. Возвращает ошибки в формате DRF (поле -> сообщения),
    пустой dict = всё ок. Каталожные проверки (SKU/купон) делает pricing.
    """
    errors: dict[str, list[str]] = {}

    if not state.email or not EMAIL_RE.match(state.email):
        errors["email"] = ["Enter a valid email address."]

    missing = _missing_fields(state.shipping_address)
    if missing:
        errors["shipping_address"] = [f"{f} is required." for f in missing]

    if state.billing_enabled:
        missing = _missing_fields(state.billing_address)
        if missing:
            errors["billing_address"] = [f"{f} is required." for f in missing]

    if not state.items:
        errors["items"] = ["Cart is empty."]
    elif any(line.qty < 1 for line in state.items):
        errors["items"] = ["Quantity must be at least 1."]

    enabled = set(enabled_methods)
    if not state.payment_method:
        errors["payment_method"] = ["Choose a payment method."]
    elif state.payment_method not in enabled:
        errors["payment_method"] = [f"Payment method '{state.payment_method}' is not available."]

    return errors
