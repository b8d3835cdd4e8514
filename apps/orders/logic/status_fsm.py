#apps/orders/logic/status_fsm.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from apps.orders.errors import InvalidTransition
from apps.orders.models import Order


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    reason: str | None = None


# Один источник правды: allowed transitions
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    Order.STATUS_CREATED: {Order.STATUS_PENDING_PAYMENT, Order.STATUS_CANCELLED},
    Order.STATUS_PENDING_PAYMENT: {
        Order.STATUS_PAID,
        Order.STATUS_ON_HOLD,
        Order.STATUS_FAILED,
        Order.STATUS_CANCELLED,
    },
    Order.STATUS_ON_HOLD: {Order.STATUS_PAID, Order.STATUS_FAILED, Order.STATUS_CANCELLED},
    Order.STATUS_PAID: {Order.STATUS_REFUNDED, Order.STATUS_PARTIALLY_REFUNDED},
    # каждый следующий частичный возврат - тоже переход (refunded_total меняется)
    Order.STATUS_PARTIALLY_REFUNDED: {Order.STATUS_PARTIALLY_REFUNDED, Order.STATUS_REFUNDED},
    Order.STATUS_FAILED: set(),
    Order.STATUS_CANCELLED: set(),
    Order.STATUS_REFUNDED: set(),
}

# статусы, в которых деньги уже получены (idempotency boundary для finalize)
PAID_STATUSES = frozenset({Order.STATUS_PAID, Order.STATUS_PARTIALLY_REFUNDED, Order.STATUS_REFUNDED})
REFUNDABLE_STATUSES = frozenset({Order.STATUS_PAID, Order.STATUS_PARTIALLY_REFUNDED})
UNPAID_OPEN_STATUSES = frozenset({Order.STATUS_CREATED, Order.STATUS_PENDING_PAYMENT, Order.STATUS_ON_HOLD})
TERMINAL_STATUSES = frozenset(s for s, nxt in ALLOWED_TRANSITIONS.items() if not nxt)


def can_transition(*, current: str, new: str) -> TransitionResult:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if new in allowed:
        return TransitionResult(ok=True)

    return TransitionResult(ok=False, reason=f"Invalid status transition: {current} -> {new}.")


def assert_can_transition(*, current: str, new: str) -> None:
    """
    Бросает InvalidTransition если переход запрещён.
    Используем и в менеджере, и в репозитории, чтобы контракт был единым.
    """
    res = can_transition(current=current, new=new)
    if not res.ok:
        raise InvalidTransition(current, new, res.reason)


def sources_for(new: str) -> frozenset[str]:
    """Из каких статусов можно прийти в new: это и есть WHERE status IN (...) для CAS."""
    return frozenset(cur for cur, nxt in ALLOWED_TRANSITIONS.items() if new in nxt)


def allowed_next_statuses(*, current: str) -> Iterable[str]:
    return sorted(ALLOWED_TRANSITIONS.get(current, set()))
