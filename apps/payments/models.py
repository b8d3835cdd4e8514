# apps/payments/models.py
from django.conf import settings
from django.db import models

from core.models import PublicModel


class OrderPaymentHandle(PublicModel):
    """
    PaymentHandle: ссылка на попытку оплаты у конкретного провайдера.

    - external_ref: payment-intent id / wallet order id / mandate reference / bank reference
    - provider_status: непрозрачный статус провайдера, как он его вернул
    - один АКТИВНЫЙ handle на (order, provider); новая попытка деактивирует старую
      (supersede), а не добавляет молча ещё одну
    """

    order = models.ForeignKey("orders.Order", on_delete=models.CASCADE, related_name="payment_handles")

    provider = models.CharField(max_length=32)
    external_ref = models.CharField(max_length=128, db_index=True)
    provider_status = models.CharField(max_length=64, blank=True, default="")

    is_active = models.BooleanField(default=True)
    superseded_at = models.DateTimeField(null=True, blank=True)

    # ответ провайдера после redaction (для разборов)
    raw_provider_payload = models.JSONField(null=True, blank=True)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(
                fields=["order", "provider"],
                condition=models.Q(is_active=True),
                name="uniq_active_handle_per_order_provider",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentHandle({self.provider}:{self.external_ref}) {self.provider_status}"


class PaymentEvent(PublicModel):
    """
    Аудит жизненного цикла handle'а:
    create / supersede / confirm / webhook.
    """

    handle = models.ForeignKey("payments.OrderPaymentHandle", on_delete=models.CASCADE, related_name="events")

    actor = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL)

    from_status = models.CharField(max_length=64, null=True, blank=True)
    to_status = models.CharField(max_length=64)
    action = models.CharField(max_length=32)

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"PaymentEvent({self.handle_id}) {self.action} {self.from_status}->{self.to_status}"


class MandateRecord(PublicModel):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        REFUNDED = "refunded", "Refunded"
        FAILED = "failed", "Failed"

    order = models.ForeignKey("orders.Order", on_delete=models.CASCADE, related_name="mandates")

    mandate_reference = models.CharField(max_length=64, unique=True)
    holder_name = models.CharField(max_length=255)
    # полный IBAN не храним
    masked_account_ref = models.CharField(max_length=64)
    bic = models.CharField(max_length=11, blank=True, default="")

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"Mandate {self.mandate_reference} {self.status}"
