#apps/orders/logic/lifecycle.py
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import structlog
from django.utils import timezone

from apps.checkout.state import CheckoutState, validate_checkout_state
from apps.checkout.store import CheckoutSessionStore
from apps.orders.domain import FinalizeResult, OrderDraft, OrderSnapshot, PaymentRef, RefundResult, TransitionOutcome
from apps.orders.errors import CheckoutInvalid, InvalidTransition, RefundRejected
from apps.orders.events import OrderEventBus
from apps.orders.logic.pricing import price_cart
from apps.orders.logic.status_fsm import PAID_STATUSES, REFUNDABLE_STATUSES, UNPAID_OPEN_STATUSES, sources_for
from apps.orders.models import Order
from apps.orders.repository import OrderRepository
from apps.payments.config import PaymentsConfig
from apps.payments.money import from_minor_units, to_minor_units
from apps.payments.providers.registry import GatewayRegistry

logger = structlog.get_logger(__name__)


class OrderLifecycleManager:
    """
    Единственный, кто создаёт заказ и двигает его статус.

    Инварианты:
    - каждый переход = compare-and-set в репозитории (OrderRepository.transition),
      а не "прочитал -> проверил -> записал";
    - finalize идемпотентен: выигравший CAS делает side-effects (очистка сессии,
      OnOrderFinalized), все остальные видят already_finalized и ничего не повторяют;
    - после paid/on_hold никакой канал не может повторно вызвать capture/письмо;
      дальше доступны только refund/cancel (и on_hold -> paid).
    """

    def __init__(
        self,
        *,
        repository: OrderRepository,
        events: OrderEventBus,
        sessions: CheckoutSessionStore,
        gateways: GatewayRegistry,
        config: PaymentsConfig,
    ):
        self.repository = repository
        self.events = events
        self.sessions = sessions
        self.gateways = gateways
        self.config = config

    # --- create -----------------------------------------------------------------

    def create_pending(self, *, session_key: str, state: CheckoutState) -> OrderSnapshot:
        """
        Materialize заказа из CheckoutState В ЭТОТ МОМЕНТ.
        Строки/адреса копируются, поэтому поздняя правка формы заказ не меняет.
        """
        errors = validate_checkout_state(state, enabled_methods=self.gateways.enabled_methods())
        priced = price_cart(
            items=state.items,
            coupon_code=state.coupon_code,
            currency=self.config.currency,
            shipping_flat_rate=self.config.shipping_flat_rate,
        )
        for field_name, messages in priced.errors.items():
            errors.setdefault(field_name, []).extend(messages)
        if errors:
            logger.info("checkout_rejected", fields=sorted(errors))
            raise CheckoutInvalid(errors)

        draft = OrderDraft(
            session_key=session_key,
            currency=self.config.currency,
            email=state.email,
            lines=priced.lines,
            shipping_total=priced.shipping_total,
            discount_total=priced.discount_total,
            shipping_address=dict(state.shipping_address),
            billing_address=dict(state.effective_billing_address),
            coupon_code=priced.coupon_code,
            payment_method=state.payment_method,
        )
        created = self.repository.create(draft)
        order = self.repository.transition(
            created.public_id,
            to_status=Order.STATUS_PENDING_PAYMENT,
            allowed_from={Order.STATUS_CREATED},
            reason="Checkout submitted.",
            source="checkout",
        ).order
        if session_key:
            self.sessions.attach_temp_order(session_key, order.public_id)

        logger.info(
            "order_created_pending",
            order_id=str(order.public_id),
            total=str(order.total),
            currency=order.currency,
            payment_method=order.payment_method,
        )
        return order

    # --- paid -------------------------------------------------------------------

    def finalize(self, order_id, payment_ref: PaymentRef, *, source: str, actor=None) -> FinalizeResult:
        if not payment_ref or not payment_ref.external_id.strip():
            raise ValueError("finalize requires a non-empty external payment reference.")

        change = self.repository.transition(
            order_id,
            to_status=Order.STATUS_PAID,
            allowed_from={Order.STATUS_PENDING_PAYMENT, Order.STATUS_ON_HOLD},
            changes={
                "payment_provider": payment_ref.provider,
                "payment_reference": payment_ref.external_id,
                "is_temp": False,
                "paid_at": timezone.now(),
                "failure_reason": "",
            },
            reason="Payment confirmed.",
            source=source,
            actor=actor,
            metadata={"provider": payment_ref.provider, "external_id": payment_ref.external_id},
        )

        if change is None:
            current = self.repository.get(order_id)
            if current.status in PAID_STATUSES:
                logger.info(
                    "order_already_finalized",
                    order_id=str(current.public_id),
                    source=source,
                    provider=payment_ref.provider,
                    external_id=payment_ref.external_id,
                )
                return FinalizeResult(order=current, already_finalized=True)
            raise InvalidTransition(current.status, Order.STATUS_PAID)

        # side-effects только у победителя CAS
        order = change.order
        self.sessions.clear(order.session_key)
        logger.info(
            "order_finalized",
            order_id=str(order.public_id),
            source=source,
            provider=payment_ref.provider,
            external_id=payment_ref.external_id,
        )
        self.events.order_finalized(order)
        self.events.status_changed(order, change.from_status, Order.STATUS_PAID)
        return FinalizeResult(order=order, already_finalized=False)

    # --- on_hold / failed / cancelled -------------------------------------------

    def mark_on_hold(self, order_id, *, payment_ref: PaymentRef | None = None, reason: str, source: str) -> TransitionOutcome:
        changes = {"is_temp": False}
        if payment_ref:
            changes.update(payment_provider=payment_ref.provider, payment_reference=payment_ref.external_id)

        change = self.repository.transition(
            order_id,
            to_status=Order.STATUS_ON_HOLD,
            allowed_from={Order.STATUS_PENDING_PAYMENT},
            changes=changes,
            reason=reason,
            source=source,
        )
        if change is None:
            current = self.repository.get(order_id)
            if current.status == Order.STATUS_ON_HOLD or current.status in PAID_STATUSES:
                return TransitionOutcome(order=current, changed=False)
            raise InvalidTransition(current.status, Order.STATUS_ON_HOLD)

        # заказ принят (ждём деньги): checkout этой сессии завершён
        order = change.order
        self.sessions.clear(order.session_key)
        logger.info("order_on_hold", order_id=str(order.public_id), source=source, reason=reason)
        self.events.status_changed(order, change.from_status, Order.STATUS_ON_HOLD)
        return TransitionOutcome(order=order, changed=True)

    def mark_failed(self, order_id, *, reason: str, source: str, actor=None) -> TransitionOutcome:
        if not (reason or "").strip():
            raise ValueError("A transition into failed requires a human-readable reason.")

        change = self.repository.transition(
            order_id,
            to_status=Order.STATUS_FAILED,
            allowed_from=sources_for(Order.STATUS_FAILED),
            changes={"failure_reason": reason[:255]},
            reason=reason,
            source=source,
            actor=actor,
        )
        if change is None:
            current = self.repository.get(order_id)
            if current.status == Order.STATUS_FAILED:
                return TransitionOutcome(order=current, changed=False)
            # paid уже был: failed недостижим
            raise InvalidTransition(current.status, Order.STATUS_FAILED)

        order = change.order
        logger.info("order_failed", order_id=str(order.public_id), source=source, reason=reason)
        self.events.status_changed(order, change.from_status, Order.STATUS_FAILED)
        return TransitionOutcome(order=order, changed=True)

    def cancel(self, order_id, *, reason: str = "", source: str, actor=None) -> TransitionOutcome:
        """
        Отмена:
        - неоплаченный заказ -> cancelled;
        - оплаченный -> полный возврат остатка через адаптер владельца платежа.
        """
        current = self.repository.get(order_id)
        if current.status == Order.STATUS_CANCELLED:
            return TransitionOutcome(order=current, changed=False)

        if current.status in REFUNDABLE_STATUSES:
            result = self.refund(order_id, reason=reason or "Order cancelled.", source=source, actor=actor)
            return TransitionOutcome(order=result.order, changed=not result.duplicate)

        change = self.repository.transition(
            order_id,
            to_status=Order.STATUS_CANCELLED,
            allowed_from=UNPAID_OPEN_STATUSES,
            changes={"is_temp": False},
            reason=reason or "Order cancelled.",
            source=source,
            actor=actor,
        )
        if change is None:
            latest = self.repository.get(order_id)
            if latest.status == Order.STATUS_CANCELLED:
                return TransitionOutcome(order=latest, changed=False)
            raise InvalidTransition(latest.status, Order.STATUS_CANCELLED)

        order = change.order
        logger.info("order_cancelled", order_id=str(order.public_id), source=source)
        self.events.status_changed(order, change.from_status, Order.STATUS_CANCELLED)
        return TransitionOutcome(order=order, changed=True)

    # --- refunds ----------------------------------------------------------------

    def refund(self, order_id, amount: Decimal | None = None, *, reason: str = "", source: str, actor=None) -> RefundResult:
        """Возврат по инициативе магазина: сначала reversal у провайдера, потом учёт."""
        order = self.repository.get(order_id)
        if order.status not in REFUNDABLE_STATUSES:
            raise InvalidTransition(order.status, Order.STATUS_REFUNDED)

        amount = order.remaining_balance if amount is None else Decimal(str(amount))
        self._check_refund_amount(order, amount)

        adapter = self.gateways.get(order.payment_ref.provider if order.payment_ref else order.payment_method)
        refund_ref = adapter.refund(order, amount)
        logger.info(
            "refund_dispatched",
            order_id=str(order.public_id),
            provider=adapter.name,
            amount=str(amount),
            refund_ref=refund_ref,
        )
        return self.record_refund(order_id, amount, refund_ref=refund_ref, reason=reason, source=source, actor=actor)

    def record_refund(
        self,
        order_id,
        amount: Decimal,
        *,
        refund_ref: str,
        reason: str = "",
        source: str,
        actor=None,
    ) -> RefundResult:
        """
        Учёт возврата, который уже случился у провайдера (или только что отправлен).

        Идемпотентность по refund_ref. full/partial решаем точным сравнением
        в minor units: refunded_total == total -> refunded, иначе partially_refunded.
        """
        if not refund_ref:
            raise ValueError("record_refund requires a provider refund reference.")
        amount = Decimal(str(amount))

        for _attempt in range(3):
            order = self.repository.get(order_id)
            if self.repository.has_refund(order_id, refund_ref):
                logger.info("refund_already_recorded", order_id=str(order.public_id), refund_ref=refund_ref)
                return RefundResult(order=order, amount=amount, refund_ref=refund_ref, duplicate=True)

            if order.status not in REFUNDABLE_STATUSES:
                raise InvalidTransition(order.status, Order.STATUS_REFUNDED)
            self._check_refund_amount(order, amount)

            new_minor = order.refunded_minor + to_minor_units(amount, order.currency)
            new_status = Order.STATUS_REFUNDED if new_minor == order.total_minor else Order.STATUS_PARTIALLY_REFUNDED

            updated = self.repository.apply_refund(
                order_id,
                amount=amount,
                refund_ref=refund_ref,
                expected_status=order.status,
                expected_refunded_total=order.refunded_total,
                new_status=new_status,
                new_refunded_total=from_minor_units(new_minor, order.currency),
                reason=reason,
                source=source,
                actor=actor,
            )
            if updated is not None:
                logger.info(
                    "refund_recorded",
                    order_id=str(updated.public_id),
                    refund_ref=refund_ref,
                    amount=str(amount),
                    refunded_total=str(updated.refunded_total),
                    status=updated.status,
                )
                self.events.status_changed(updated, order.status, new_status)
                return RefundResult(order=updated, amount=amount, refund_ref=refund_ref)

        latest = self.repository.get(order_id)
        if self.repository.has_refund(order_id, refund_ref):
            return RefundResult(order=latest, amount=amount, refund_ref=refund_ref, duplicate=True)
        raise RefundRejected("Order changed concurrently, refund was not recorded.")

    # --- maintenance ------------------------------------------------------------

    def expire_stale(self, *, older_than_minutes: int | None = None) -> list[OrderSnapshot]:
        """
        Заказы без оплаты дольше TTL:
        - pending_payment -> failed (reason=expired);
        - created (упали между create и переходом) -> cancelled.
        """
        minutes = older_than_minutes if older_than_minutes is not None else self.config.pending_order_ttl_minutes
        cutoff = timezone.now() - timedelta(minutes=minutes)
        expired = []
        for order in self.repository.list_stale(
            statuses=[Order.STATUS_CREATED, Order.STATUS_PENDING_PAYMENT],
            older_than=cutoff,
        ):
            try:
                if order.status == Order.STATUS_CREATED:
                    outcome = self.cancel(order.public_id, reason="Checkout abandoned (expired).", source="system")
                else:
                    outcome = self.mark_failed(
                        order.public_id, reason="Payment not completed in time (expired).", source="system"
                    )
            except InvalidTransition:
                # оплатили между выборкой и переходом
                continue
            if outcome.changed:
                expired.append(outcome.order)
        return expired

    def _check_refund_amount(self, order: OrderSnapshot, amount: Decimal) -> None:
        amount_minor = to_minor_units(amount, order.currency)
        if amount_minor <= 0:
            raise RefundRejected("Refund amount must be positive.")
        if order.refunded_minor + amount_minor > order.total_minor:
            raise RefundRejected("Refund amount exceeds the remaining balance.")

