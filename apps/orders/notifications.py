# apps/orders/notifications.py
from __future__ import annotations

import structlog
from django.conf import settings
from django.core.mail import send_mail

from apps.orders.domain import OrderSnapshot

logger = structlog.get_logger(__name__)


def send_order_confirmation(order: OrderSnapshot) -> None:
    """Подписчик OnOrderFinalized: одно письмо-подтверждение на заказ."""
    if not order.email:
        logger.info("order_confirmation_skipped_no_email", order_id=str(order.public_id))
        return

    lines = "\n".join(f"{line.qty} x {line.name}: {line.line_total} {order.currency}" for line in order.lines)
    body = (
        f"Thank you for your order {order.public_id}.\n\n"
        f"{lines}\n\n"
        f"Total: {order.total} {order.currency}\n"
    )
    send_mail(
        subject=f"Order {order.public_id} confirmed",
        message=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[order.email],
    )
    logger.info("order_confirmation_sent", order_id=str(order.public_id))
