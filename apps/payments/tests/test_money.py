from decimal import Decimal

import pytest

from apps.payments.money import format_amount, from_minor_units, to_minor_units


@pytest.mark.parametrize(
    "amount, currency, minor",
    [
        ("49.99", "EUR", 4999),
        ("0.10", "eur", 10),
        ("1000", "JPY", 1000),
        ("1.234", "KWD", 1234),
        ("10.005", "EUR", 1001),
    ],
)
def test_to_minor_units_respects_currency_exponent(amount, currency, minor):
    assert to_minor_units(Decimal(amount), currency) == minor


def test_from_minor_units_is_exact():
    assert from_minor_units(4999, "EUR") == Decimal("49.99")
    assert from_minor_units(1000, "JPY") == Decimal("1000")


def test_format_amount_pads_to_exponent():
    assert format_amount(Decimal("5"), "EUR") == "5.00"
    assert format_amount(Decimal("5"), "JPY") == "5"
