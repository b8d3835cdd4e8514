# apps/payments/money.py
"""
Деньги считаем только в Decimal, сравниваем только в minor units (int).
Никаких float и никаких "допусков" при сравнении сумм.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

# ISO 4217: валюты с нестандартной экспонентой
ZERO_DECIMAL_CURRENCIES = frozenset({"BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA", "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF"})
THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "JOD", "KWD", "OMR", "TND"})


def currency_exponent(currency: str) -> int:
    code = (currency or "").upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def quantize(amount, currency: str) -> Decimal:
    exp = currency_exponent(currency)
    return Decimal(str(amount)).quantize(Decimal(1).scaleb(-exp), rounding=ROUND_HALF_UP)


def to_minor_units(amount, currency: str) -> int:
    """Decimal("49.99"), "EUR" -> 4999."""
    exp = currency_exponent(currency)
    return int(quantize(amount, currency).scaleb(exp))


def from_minor_units(value: int, currency: str) -> Decimal:
    exp = currency_exponent(currency)
    return quantize(Decimal(int(value)).scaleb(-exp), currency)


def format_amount(amount, currency: str) -> str:
    """Строка для API провайдеров, которые принимают десятичную сумму ("49.99")."""
    return str(quantize(amount, currency))
