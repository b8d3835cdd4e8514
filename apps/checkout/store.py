# apps/checkout/store.py
from __future__ import annotations

from importlib import import_module

import structlog
from django.conf import settings
from django.contrib.sessions.backends.base import SessionBase

from apps.checkout.state import CheckoutState

logger = structlog.get_logger(__name__)

STATE_KEY = "checkout_state"


class CheckoutSessionStore:
    """
    Checkout Session Store поверх Django sessions.

    Адресуем сессию ключом (session_key), а не объектом request: webhook очищает
    сессию покупателя по ключу, сохранённому в заказе, без HTTP-запроса покупателя.
    View может передать сам request.session: тогда SessionMiddleware в конце
    запроса сохраняет те же данные, а не устаревший кэш.
    """

    def __init__(self, engine: str | None = None):
        self._engine = import_module(engine or settings.SESSION_ENGINE)

    def _open(self, session: str | SessionBase) -> SessionBase:
        if isinstance(session, SessionBase):
            return session
        return self._engine.SessionStore(session_key=session)

    def get(self, session: str | SessionBase | None) -> CheckoutState:
        if not session:
            return CheckoutState()
        return CheckoutState.from_dict(self._open(session).get(STATE_KEY))

    def save(self, session: str | SessionBase, state: CheckoutState) -> CheckoutState:
        store = self._open(session)
        store[STATE_KEY] = state.to_dict()
        store.save()
        return state

    def update(self, session: str | SessionBase, **changes) -> CheckoutState:
        state = self.get(session).with_changes(**changes)
        return self.save(session, state)

    def set_payment_method(self, session: str | SessionBase, method: str) -> CheckoutState:
        return self.update(session, payment_method=method)

    def attach_temp_order(self, session: str | SessionBase, order_id) -> CheckoutState:
        return self.update(session, temp_order_id=str(order_id))

    def clear(self, session_key: str | None) -> bool:
        if not session_key:
            return False

        session = self._engine.SessionStore(session_key=session_key)
        # сессия могла истечь: не создаём новую ради очистки
        if not session.exists(session_key):
            return False
        if STATE_KEY not in session:
            return False

        del session[STATE_KEY]
        session.save()
        logger.info("checkout_session_cleared", session_tail=session_key[-6:])
        return True
