# apps/orders/repository.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Iterable, Protocol

from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.orders.domain import OrderDraft, OrderLine, OrderSnapshot, PaymentRef, StatusChange
from apps.orders.errors import OrderNotFound
from apps.orders.logic.status_fsm import assert_can_transition, sources_for
from apps.orders.models import Order, OrderItem, OrderRefund, OrderStatusEvent


class OrderRepository(Protocol):
    """
    Порт хранения заказов.

    Все изменения статуса - только через transition()/apply_refund():
    это условный UPDATE (compare-and-set), а не read-then-write.
    """

    def create(self, draft: OrderDraft) -> OrderSnapshot:
        ...

    def get(self, order_id) -> OrderSnapshot:
        ...

    def find_by_payment_ref(self, ref: PaymentRef) -> OrderSnapshot | None:
        ...

    def transition(
        self,
        order_id,
        *,
        to_status: str,
        allowed_from: Iterable[str] | None = None,
        changes: dict[str, Any] | None = None,
        reason: str = "",
        source: str = "",
        actor=None,
        metadata: dict | None = None,
    ) -> StatusChange | None:
        ...

    def has_refund(self, order_id, refund_ref: str) -> bool:
        ...

    def apply_refund(
        self,
        order_id,
        *,
        amount: Decimal,
        refund_ref: str,
        expected_status: str,
        expected_refunded_total: Decimal,
        new_status: str,
        new_refunded_total: Decimal,
        reason: str = "",
        source: str = "",
        actor=None,
    ) -> OrderSnapshot | None:
        ...

    def list_stale(self, *, statuses: Iterable[str], older_than: datetime) -> list[OrderSnapshot]:
        ...


class _DuplicateRefund(Exception):
    """Внутренний сигнал: откатить CAS, если refund id уже записан параллельным запросом."""


def to_snapshot(order: Order) -> OrderSnapshot:
    lines = tuple(
        OrderLine(
            sku=it.sku,
            name=it.product_name,
            qty=it.qty,
            unit_price=it.unit_price,
            tax_rate=it.tax_rate,
            line_total=it.line_total,
            product_id=it.product_id,
        )
        for it in order.items.all()
    )
    payment_ref = None
    if order.payment_provider and order.payment_reference:
        payment_ref = PaymentRef(order.payment_provider, order.payment_reference)

    return OrderSnapshot(
        id=order.pk,
        public_id=order.public_id,
        status=order.status,
        is_temp=order.is_temp,
        currency=order.currency,
        email=order.email,
        lines=lines,
        subtotal=order.subtotal,
        tax_total=order.tax_total,
        shipping_total=order.shipping_total,
        discount_total=order.discount_total,
        total=order.total,
        refunded_total=order.refunded_total,
        shipping_address=MappingProxyType(dict(order.shipping_address or {})),
        billing_address=MappingProxyType(dict(order.billing_address or {})),
        coupon_code=order.coupon_code,
        payment_method=order.payment_method,
        payment_ref=payment_ref,
        failure_reason=order.failure_reason,
        session_key=order.session_key,
        paid_at=order.paid_at,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def _as_uuid(order_id) -> uuid.UUID:
    if isinstance(order_id, uuid.UUID):
        return order_id
    try:
        return uuid.UUID(str(order_id))
    except (TypeError, ValueError):
        raise OrderNotFound(order_id)


class DjangoOrderRepository:
    # сколько раз перечитываем статус, если CAS проиграл гонку
    max_cas_attempts = 3

    @transaction.atomic
    def create(self, draft: OrderDraft) -> OrderSnapshot:
        order = Order.objects.create(
            session_key=draft.session_key or "",
            currency=draft.currency,
            email=draft.email,
            shipping_total=draft.shipping_total,
            discount_total=draft.discount_total,
            shipping_address=dict(draft.shipping_address),
            billing_address=dict(draft.billing_address),
            coupon_code=draft.coupon_code,
            payment_method=draft.payment_method,
        )
        OrderItem.objects.bulk_create(
            [
                OrderItem(
                    order=order,
                    product_id=line.product_id,
                    sku=line.sku,
                    product_name=line.name,
                    qty=line.qty,
                    unit_price=line.unit_price,
                    tax_rate=line.tax_rate,
                    line_total=line.line_total,
                )
                for line in draft.lines
            ]
        )
        order.recompute_totals()
        order.save(update_fields=["subtotal", "tax_total", "total", "updated_at"])
        return self._load(order.public_id)

    def get(self, order_id) -> OrderSnapshot:
        return self._load(_as_uuid(order_id))

    def find_by_payment_ref(self, ref: PaymentRef) -> OrderSnapshot | None:
        if not ref:
            return None

        order = (
            Order.objects.filter(payment_provider=ref.provider, payment_reference=ref.external_id)
            .order_by("-id")
            .first()
        )
        if order is not None:
            return self._load(order.public_id)

        from apps.payments.models import OrderPaymentHandle

        handle = (
            OrderPaymentHandle.objects.filter(provider=ref.provider, external_ref=ref.external_id)
            .select_related("order")
            .order_by("-is_active", "-id")
            .first()
        )
        if handle is not None:
            return self._load(handle.order.public_id)
        return None

    def transition(
        self,
        order_id,
        *,
        to_status: str,
        allowed_from: Iterable[str] | None = None,
        changes: dict[str, Any] | None = None,
        reason: str = "",
        source: str = "",
        actor=None,
        metadata: dict | None = None,
    ) -> StatusChange | None:
        """
        Compare-and-set по статусу.

        Возвращает StatusChange (снимок после перехода и застанный статус),
        если ЭТОТ вызов выполнил переход, и None, если текущий статус не входит в allowed_from (или гонку выиграл кто-то другой).
        """
        public_id = _as_uuid(order_id)
        allowed = set(allowed_from) if allowed_from is not None else set(sources_for(to_status))
        changes = dict(changes or {})

        for _attempt in range(self.max_cas_attempts):
            with transaction.atomic():
                current = self._current_status(public_id)
                if current not in allowed:
                    return None
                assert_can_transition(current=current, new=to_status)

                updated = Order.objects.filter(public_id=public_id, status=current).update(
                    status=to_status,
                    updated_at=timezone.now(),
                    **changes,
                )
                if updated != 1:
                    # статус поменялся между чтением и UPDATE: перечитываем
                    continue

                order = Order.objects.get(public_id=public_id)
                OrderStatusEvent.objects.create(
                    order=order,
                    actor=actor if actor is not None else None,
                    from_status=current,
                    to_status=to_status,
                    reason=reason[:255],
                    source=source,
                    metadata=metadata or {},
                )
                return StatusChange(order=self._load(public_id), from_status=current)

        return None

    def has_refund(self, order_id, refund_ref: str) -> bool:
        return OrderRefund.objects.filter(order__public_id=_as_uuid(order_id), provider_refund_id=refund_ref).exists()

    def apply_refund(
        self,
        order_id,
        *,
        amount: Decimal,
        refund_ref: str,
        expected_status: str,
        expected_refunded_total: Decimal,
        new_status: str,
        new_refunded_total: Decimal,
        reason: str = "",
        source: str = "",
        actor=None,
    ) -> OrderSnapshot | None:
        """
        CAS сразу по двум полям: status и refunded_total.
        Запись в журнал возвратов и UPDATE - в одной транзакции.
        """
        public_id = _as_uuid(order_id)
        assert_can_transition(current=expected_status, new=new_status)

        try:
            with transaction.atomic():
                updated = Order.objects.filter(
                    public_id=public_id,
                    status=expected_status,
                    refunded_total=expected_refunded_total,
                ).update(
                    status=new_status,
                    refunded_total=new_refunded_total,
                    updated_at=timezone.now(),
                )
                if updated != 1:
                    return None

                order = Order.objects.get(public_id=public_id)
                try:
                    with transaction.atomic():
                        OrderRefund.objects.create(
                            order=order,
                            amount=amount,
                            provider_refund_id=refund_ref,
                            source=source,
                            reason=reason[:255],
                        )
                except IntegrityError:
                    raise _DuplicateRefund(refund_ref)

                OrderStatusEvent.objects.create(
                    order=order,
                    actor=actor if actor is not None else None,
                    from_status=expected_status,
                    to_status=new_status,
                    reason=reason[:255],
                    source=source,
                    metadata={"refund_ref": refund_ref, "amount": str(amount)},
                )
        except _DuplicateRefund:
            return None

        return self._load(public_id)

    def list_stale(self, *, statuses: Iterable[str], older_than: datetime) -> list[OrderSnapshot]:
        qs = Order.objects.filter(status__in=list(statuses), created_at__lt=older_than).prefetch_related("items")
        return [to_snapshot(o) for o in qs.order_by("id")]

    def _current_status(self, public_id: uuid.UUID) -> str:
        current = Order.objects.filter(public_id=public_id).values_list("status", flat=True).first()
        if current is None:
            raise OrderNotFound(public_id)
        return current

    def _load(self, public_id: uuid.UUID) -> OrderSnapshot:
        try:
            order = Order.objects.prefetch_related("items").get(public_id=public_id)
        except Order.DoesNotExist:
            raise OrderNotFound(public_id)
        return to_snapshot(order)
