# apps/orders/events.py
"""
Явная шина доменных событий заказа.

Менеджер заказов вызывает её синхронно ПОСЛЕ коммита перехода.
Email/синхронизация мандатов подписываются сюда, а не вызываются по имени.
"""
from __future__ import annotations

from typing import Callable

import structlog

from apps.orders.domain import OrderSnapshot

logger = structlog.get_logger(__name__)

FinalizedHandler = Callable[[OrderSnapshot], None]
StatusChangedHandler = Callable[[OrderSnapshot, str, str], None]


class OrderEventBus:
    def __init__(self) -> None:
        self._on_finalized: list[FinalizedHandler] = []
        self._on_status_changed: list[StatusChangedHandler] = []

    def subscribe_finalized(self, handler: FinalizedHandler) -> None:
        self._on_finalized.append(handler)

    def subscribe_status_changed(self, handler: StatusChangedHandler) -> None:
        self._on_status_changed.append(handler)

    def order_finalized(self, order: OrderSnapshot) -> None:
        """OnOrderFinalized(order): ровно один раз на заказ, это гарантирует CAS в менеджере."""
        for handler in self._on_finalized:
            self._dispatch(handler, "order_finalized", order.public_id, order)

    def status_changed(self, order: OrderSnapshot, from_status: str, to_status: str) -> None:
        for handler in self._on_status_changed:
            self._dispatch(handler, "order_status_changed", order.public_id, order, from_status, to_status)

    def _dispatch(self, handler, event: str, order_id, *args) -> None:
        # переход уже закоммичен: ошибка подписчика не должна откатывать оплату
        try:
            handler(*args)
        except Exception:
            logger.exception(
                "order_event_handler_failed",
                event_name=event,
                handler=getattr(handler, "__qualname__", repr(handler)),
                order_id=str(order_id),
            )
