# apps/payments/logic/mandates.py
from __future__ import annotations

import structlog
from django.utils import timezone

from apps.orders.domain import OrderSnapshot
from apps.orders.models import Order
from apps.payments.models import MandateRecord

logger = structlog.get_logger(__name__)

MANDATE_STATUS_FOR_ORDER = {
    Order.STATUS_PAID: MandateRecord.Status.COMPLETED,
    Order.STATUS_PARTIALLY_REFUNDED: MandateRecord.Status.REFUNDED,
    Order.STATUS_REFUNDED: MandateRecord.Status.REFUNDED,
    Order.STATUS_FAILED: MandateRecord.Status.FAILED,
    Order.STATUS_CANCELLED: MandateRecord.Status.FAILED,
}


def sync_mandate_status(order: OrderSnapshot, from_status: str, to_status: str) -> int:
    """Подписчик status_changed: держит MandateRecord в одном статусе с заказом."""
    target = MANDATE_STATUS_FOR_ORDER.get(to_status)
    if target is None:
        return 0

    updated = (
        MandateRecord.objects.filter(order_id=order.id)
        .exclude(status=target)
        .update(status=target, updated_at=timezone.now())
    )
    if updated:
        logger.info("mandate_status_synced", order_id=str(order.public_id), status=target, order_status=to_status)
    return updated
