# apps/orders/errors.py
from __future__ import annotations


class OrderError(Exception):
    pass


class OrderNotFound(OrderError):
    def __init__(self, order_id):
        super().__init__(f"Order {order_id} not found.")
        self.order_id = order_id


class InvalidTransition(OrderError):
    def __init__(self, current: str, target: str, message: str | None = None):
        super().__init__(message or f"Invalid status transition: {current} -> {target}.")
        self.current = current
        self.target = target


class CheckoutInvalid(OrderError):
    """CheckoutState не прошёл валидацию; errors в формате DRF (поле -> список сообщений)."""

    def __init__(self, errors: dict[str, list[str]]):
        super().__init__("Checkout data is invalid.")
        self.errors = errors


class RefundRejected(OrderError):
    pass
