# apps/payments/logic/handles.py
from __future__ import annotations

from typing import Any, Mapping

from django.db import transaction
from django.utils import timezone

from apps.orders.domain import OrderSnapshot
from apps.payments.models import OrderPaymentHandle, PaymentEvent
from apps.payments.providers.port import PaymentHandle


def active_handle(order: OrderSnapshot, *, provider: str | None = None) -> OrderPaymentHandle | None:
    qs = OrderPaymentHandle.objects.filter(order_id=order.id, is_active=True)
    if provider:
        qs = qs.filter(provider=provider)
    return qs.order_by("-id").first()


def to_handle(row: OrderPaymentHandle) -> PaymentHandle:
    return PaymentHandle(
        provider=row.provider,
        external_ref=row.external_ref,
        provider_status=row.provider_status,
        created_at=row.created_at,
    )


@transaction.atomic
def record_handle(*, order: OrderSnapshot, handle: PaymentHandle, actor=None) -> OrderPaymentHandle:
    """
    Новый активный handle для (order, provider).

    Прежний активный handle того же провайдера деактивируется (supersede)
    с событием PaymentEvent(action="supersede"), молча второй не добавляем.
    """
    previous = list(
        OrderPaymentHandle.objects.select_for_update().filter(
            order_id=order.id, provider=handle.provider, is_active=True
        )
    )
    now = timezone.now()
    for old in previous:
        old.is_active = False
        old.superseded_at = now
        old.save(update_fields=["is_active", "superseded_at", "updated_at"])
        PaymentEvent.objects.create(
            handle=old,
            actor=actor,
            from_status=old.provider_status,
            to_status=old.provider_status,
            action="supersede",
            metadata={"superseded_by": handle.external_ref},
        )

    row = OrderPaymentHandle.objects.create(
        order_id=order.id,
        provider=handle.provider,
        external_ref=handle.external_ref,
        provider_status=handle.provider_status,
        is_active=True,
        raw_provider_payload=dict(handle.raw) if handle.raw else None,
    )
    PaymentEvent.objects.create(
        handle=row,
        actor=actor,
        from_status=None,
        to_status=handle.provider_status,
        action="create",
        metadata={"superseded": [h.external_ref for h in previous]},
    )
    return row


@transaction.atomic
def record_handle_event(
    *,
    provider: str,
    external_ref: str,
    action: str,
    to_status: str,
    raw: Mapping[str, Any] | None = None,
    actor=None,
    metadata: dict | None = None,
) -> PaymentEvent | None:
    """
    Аудит действия над активным handle'ом (confirm / webhook).
    Неизвестный или уже superseded handle пропускаем: аудит не должен ронять переход.
    """
    row = (
        OrderPaymentHandle.objects.select_for_update()
        .filter(provider=provider, external_ref=external_ref, is_active=True)
        .first()
    )
    if row is None:
        return None

    from_status = row.provider_status
    row.provider_status = to_status[:64]
    update_fields = ["provider_status", "updated_at"]
    if raw:
        row.raw_provider_payload = dict(raw)
        update_fields.append("raw_provider_payload")
    row.save(update_fields=update_fields)

    return PaymentEvent.objects.create(
        handle=row,
        actor=actor,
        from_status=from_status,
        to_status=row.provider_status,
        action=action,
        metadata=metadata or {},
    )
