# apps/orders/models.py
from __future__ import annotations

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models

from apps.payments.money import quantize
from core.models import PublicModel


class Order(PublicModel):
    STATUS_CREATED = "created"
    STATUS_PENDING_PAYMENT = "pending_payment"
    STATUS_ON_HOLD = "on_hold"
    STATUS_PAID = "paid"
    STATUS_FAILED = "failed"
    STATUS_CANCELLED = "cancelled"
    STATUS_REFUNDED = "refunded"
    STATUS_PARTIALLY_REFUNDED = "partially_refunded"
    STATUS_CHOICES = (
        (STATUS_CREATED, "Created"),
        (STATUS_PENDING_PAYMENT, "Pending payment"),
        (STATUS_ON_HOLD, "On hold"),
        (STATUS_PAID, "Paid"),
        (STATUS_FAILED, "Failed"),
        (STATUS_CANCELLED, "Cancelled"),
        (STATUS_REFUNDED, "Refunded"),
        (STATUS_PARTIALLY_REFUNDED, "Partially refunded"),
    )

    status = models.CharField(
        max_length=32,
        choices=STATUS_CHOICES,
        default=STATUS_CREATED,
        db_index=True,
    )
    # provisional (temp) заказ до того, как checkout реально завершён
    is_temp = models.BooleanField(default=True)

    session_key = models.CharField(max_length=40, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    currency = models.CharField(max_length=3, default="EUR")

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    shipping_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    refunded_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    shipping_address = models.JSONField(blank=True, default=dict)
    billing_address = models.JSONField(blank=True, default=dict)
    coupon_code = models.CharField(max_length=64, blank=True, default="")

    payment_method = models.CharField(max_length=32, blank=True, default="")
    # PaymentRef: (payment_provider, payment_reference)
    payment_provider = models.CharField(max_length=32, blank=True, default="")
    payment_reference = models.CharField(max_length=128, blank=True, default="", db_index=True)

    failure_reason = models.CharField(max_length=255, blank=True, default="")
    paid_at = models.DateTimeField(null=True, blank=True)

    def __init__(self, *args, **kwargs):
        """
        Django создаёт объект модели как при загрузке из БД, так и при создании.
        Фиксируем статус "как был загружен", чтобы отловить попытку поменять его напрямую.
        """
        super().__init__(*args, **kwargs)
        self._loaded_status = self.status

    def save(self, *args, **kwargs):
        """
        ЖЁСТКИЙ ИНВАРИАНТ:
        - Нельзя менять Order.status через model.save().
        - Статус меняется ТОЛЬКО через OrderRepository.transition (условный UPDATE + OrderStatusEvent).
        """
        is_update = self.pk is not None and not self._state.adding
        status_changed = is_update and (self.status != getattr(self, "_loaded_status", None))

        if status_changed:
            raise DjangoValidationError(
                {"status": "Order.status can only be changed via the order lifecycle manager."}
            )

        super().save(*args, **kwargs)
        self._loaded_status = self.status

    def recompute_totals(self) -> None:
        """
        Minimal: subtotal = sum(line_total), tax_total = line_total * (rate/100) per item,
        total = subtotal + tax_total + shipping_total - discount_total
        """
        subtotal = Decimal("0.00")
        tax_total = Decimal("0.00")

        for it in self.items.all():
            subtotal += it.line_total
            tax_total += (it.line_total * it.tax_rate / Decimal("100"))

        self.subtotal = quantize(subtotal, self.currency)
        self.tax_total = quantize(tax_total, self.currency)
        self.total = quantize(self.subtotal + self.tax_total + self.shipping_total - self.discount_total, self.currency)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["payment_provider", "payment_reference"], name="orders_orde_payment_3c1f0e_idx"),
            models.Index(fields=["status", "created_at"], name="orders_orde_status_8d2a41_idx"),
        ]

    def __str__(self) -> str:
        return f"Order {self.public_id}"


class OrderItem(models.Model):
    """Snapshot строки корзины на момент create_pending. Каталог потом может меняться."""

    public_id = models.UUIDField(default=uuid.uuid4, editable=False, unique=True)

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.SET_NULL,
        related_name="order_items",
        null=True,
        blank=True,
    )

    sku = models.CharField(max_length=64)
    product_name = models.CharField(max_length=255)
    qty = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    line_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.product_name} x {self.qty}"


class OrderStatusEvent(models.Model):
    SOURCE_CHECKOUT = "checkout"
    SOURCE_CONFIRM = "confirm"
    SOURCE_RETURN = "return"
    SOURCE_WEBHOOK = "webhook"
    SOURCE_STAFF = "staff"
    SOURCE_SYSTEM = "system"

    public_id = models.UUIDField(default=uuid.uuid4, editable=False, unique=True)

    order = models.ForeignKey("orders.Order", on_delete=models.CASCADE, related_name="status_events")

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="order_status_events",
    )

    from_status = models.CharField(max_length=32)
    to_status = models.CharField(max_length=32)

    reason = models.CharField(max_length=255, blank=True, default="")
    source = models.CharField(max_length=16, blank=True, default="")
    metadata = models.JSONField(blank=True, default=dict)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["order", "created_at"], name="orders_orde_order_i_5b7e2c_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.order_id}: {self.from_status} -> {self.to_status}"


class OrderRefund(models.Model):
    """
    Журнал возвратов. provider_refund_id уникален в рамках заказа:
    повторный webhook с тем же refund id ничего не меняет.
    """

    public_id = models.UUIDField(default=uuid.uuid4, editable=False, unique=True)

    order = models.ForeignKey("orders.Order", on_delete=models.CASCADE, related_name="refunds")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    provider_refund_id = models.CharField(max_length=128)

    source = models.CharField(max_length=16, blank=True, default="")
    reason = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(fields=["order", "provider_refund_id"], name="uniq_refund_per_order"),
        ]

    def __str__(self) -> str:
        return f"Refund {self.provider_refund_id} {self.amount}"
