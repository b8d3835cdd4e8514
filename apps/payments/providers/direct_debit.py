# apps/payments/providers/direct_debit.py
from __future__ import annotations

import re
import uuid
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Callable, Mapping

import structlog

from apps.orders.domain import OrderSnapshot
from apps.payments.config import PaymentsConfig
from apps.payments.errors import PaymentDataInvalid
from apps.payments.models import MandateRecord
from apps.payments.providers.port import OUTCOME_PENDING, CheckoutData, PaymentHandle, PaymentOutcome

logger = structlog.get_logger(__name__)

IBAN_RE = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{11,30}$")
BIC_RE = re.compile(r"^[A-Z]{6}[A-Z0-9]{2}([A-Z0-9]{3})?$")


def normalize_account_ref(value: Any) -> str:
    return re.sub(r"\s+", "", str(value or "")).upper()


def validate_iban(account_ref: str) -> bool:
    """Структура + ISO 7064 mod 97. Проверки по банковским справочникам - не здесь."""
    iban = normalize_account_ref(account_ref)
    if not IBAN_RE.match(iban):
        return False
    rearranged = iban[4:] + iban[:4]
    digits = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(digits) % 97 == 1


def mask_account_ref(account_ref: str) -> str:
    """DE89370400440532013000 -> DE89 **** **** **** **30 00 (первые 4 и последние 4 видны)."""
    iban = normalize_account_ref(account_ref)
    if len(iban) <= 8:
        return iban
    masked = iban[:4] + "*" * (len(iban) - 8) + iban[-4:]
    return " ".join(masked[i:i + 4] for i in range(0, len(masked), 4))


class DirectDebitGateway:
    """
    Direct-debit mandate адаптер.

    Внешнего процессора нет: валидируем счёт и держателя, выпускаем мандат
    с детерминированной ссылкой и сразу возвращаем handle.
    Это самый слабый путь: оплата НЕ подтверждена, пока staff не сделает settle.
    """

    name = "direct_debit"
    settles_offline = True

    def __init__(self, config: PaymentsConfig, *, validate: Callable[[str], bool] = validate_iban):
        self.config = config
        self.validate = validate

    def mandate_reference_for(self, order: OrderSnapshot) -> str:
        return f"{self.config.mandate_prefix}{order.id:08d}"

    def initiate(self, checkout: CheckoutData, order: OrderSnapshot) -> PaymentHandle:
        data = checkout.payment_data
        account_ref = normalize_account_ref(data.get("account_ref") or data.get("iban"))
        holder_name = str(data.get("holder_name") or "").strip()
        bic = normalize_account_ref(data.get("bic"))

        errors: dict[str, list[str]] = {}
        if not holder_name:
            errors["holder_name"] = ["Account holder name is required."]
        if not account_ref:
            errors["account_ref"] = ["Account reference is required."]
        elif not self.validate(account_ref):
            errors["account_ref"] = ["Account reference is not valid."]
        if bic and not BIC_RE.match(bic):
            errors["bic"] = ["BIC is not valid."]
        if not data.get("mandate_accepted"):
            errors["mandate_accepted"] = ["The direct debit mandate must be accepted."]
        if errors:
            raise PaymentDataInvalid(errors)

        reference = self.mandate_reference_for(order)
        masked = mask_account_ref(account_ref)
        mandate, created = MandateRecord.objects.update_or_create(
            mandate_reference=reference,
            defaults={
                "order_id": order.id,
                "holder_name": holder_name,
                "masked_account_ref": masked,
                "bic": bic,
                "status": MandateRecord.Status.PENDING,
            },
        )
        logger.info(
            "mandate_issued",
            order_id=str(order.public_id),
            mandate_reference=reference,
            masked_account_ref=masked,
            reissued=not created,
        )

        return PaymentHandle(
            provider=self.name,
            external_ref=reference,
            provider_status=MandateRecord.Status.PENDING,
            continuation=MappingProxyType(
                {
                    "mandate_reference": reference,
                    "masked_account_ref": masked,
                    "settlement_confirmed": False,
                }
            ),
        )

    def confirm(self, handle: PaymentHandle, client_result: Mapping[str, Any] | None = None) -> PaymentOutcome:
        return PaymentOutcome(
            OUTCOME_PENDING,
            transaction_id=handle.external_ref,
            message="Direct debit mandate issued, settlement not confirmed.",
            continuation=MappingProxyType({"mandate_reference": handle.external_ref, "settlement_confirmed": False}),
        )

    def refund(self, order: OrderSnapshot, amount: Decimal) -> str:
        # возврат по мандату проводится вручную в банке, у нас только ссылка для журнала
        return f"MANUAL-REFUND-{uuid.uuid4().hex[:12].upper()}"
