#apps/orders/logic/pricing.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from apps.checkout.state import CartLine
from apps.orders.domain import OrderLine
from apps.payments.money import quantize
from apps.products.models import Coupon, Product


@dataclass(frozen=True)
class PricedCart:
    lines: tuple[OrderLine, ...]
    subtotal: Decimal
    shipping_total: Decimal
    discount_total: Decimal
    coupon_code: str
    errors: dict[str, list[str]]


def price_cart(
    *,
    items: Iterable[CartLine],
    coupon_code: str,
    currency: str,
    shipping_flat_rate: Decimal,
) -> PricedCart:
    """
    Цены берём из каталога В ЭТОТ МОМЕНТ (snapshot в OrderItem).

    - одинаковые sku схлопываем в одну строку
    - line_total = qty * unit_price
    - купон: percent от subtotal или fixed, но не больше subtotal
    Итоги (tax/total) считает Order.recompute_totals по сохранённым строкам.
    """
    qty_by_sku: dict[str, int] = {}
    for line in items:
        qty_by_sku[line.sku] = qty_by_sku.get(line.sku, 0) + int(line.qty)

    products = {
        p.sku: p
        for p in Product.objects.filter(sku__in=list(qty_by_sku.keys()), status=Product.STATUS_ACTIVE)
    }

    errors: dict[str, list[str]] = {}
    unknown = sorted(sku for sku in qty_by_sku if sku not in products)
    if unknown:
        errors["items"] = [f"Unknown product: {sku}." for sku in unknown]

    lines = []
    subtotal = Decimal("0.00")
    for sku, qty in qty_by_sku.items():
        product = products.get(sku)
        if product is None:
            continue
        line_total = quantize(product.unit_price * qty, currency)
        subtotal += line_total
        lines.append(
            OrderLine(
                sku=sku,
                name=product.name,
                qty=qty,
                unit_price=product.unit_price,
                tax_rate=product.tax_rate,
                line_total=line_total,
                product_id=product.pk,
            )
        )

    discount = Decimal("0.00")
    code = (coupon_code or "").strip()
    if code:
        coupon = Coupon.objects.filter(code__iexact=code, is_active=True).first()
        if coupon is None:
            errors["coupon_code"] = ["Coupon is not valid."]
        elif coupon.kind == Coupon.KIND_PERCENT:
            discount = quantize(subtotal * coupon.value / Decimal("100"), currency)
        else:
            discount = quantize(min(coupon.value, subtotal), currency)
        if coupon is not None:
            code = coupon.code

    return PricedCart(
        lines=tuple(lines),
        subtotal=quantize(subtotal, currency),
        shipping_total=quantize(shipping_flat_rate, currency) if lines else Decimal("0.00"),
        discount_total=discount,
        coupon_code=code,
        errors=errors,
    )
