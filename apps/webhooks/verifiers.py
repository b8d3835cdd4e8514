# apps/webhooks/verifiers.py
"""
Проверка подлинности входящих webhook'ов.

Каждый verifier либо молча возвращает None, либо бросает SignatureError.
Не настроенный секрет - WebhookConfigurationError, а не "пропускаем".
"""
from __future__ import annotations

import hmac
import json
from typing import Mapping, Protocol

import stripe
import structlog

from apps.payments.api_client import ProviderApiClient
from apps.payments.config import PaymentsConfig
from apps.payments.errors import ApiError, SignatureError, WebhookConfigurationError

logger = structlog.get_logger(__name__)

WALLET_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class WebhookVerifier(Protocol):
    def verify(self, payload: bytes, headers: Mapping[str, str]) -> None:
        ...


class CardSignatureVerifier:
    """Stripe-Signature: HMAC-SHA256 над "timestamp.payload" + окно по времени."""

    header = "Stripe-Signature"

    def __init__(self, config: PaymentsConfig):
        self.secret = config.provider("card").webhook_secret
        self.tolerance = config.webhook_tolerance

    def verify(self, payload: bytes, headers: Mapping[str, str]) -> None:
        if not self.secret:
            raise WebhookConfigurationError("Card webhook secret is not configured.")

        signature = headers.get(self.header)
        if not signature:
            raise SignatureError("Missing Stripe-Signature header.")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.secret,
                tolerance=self.tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            raise SignatureError(f"Invalid card webhook signature: {exc}") from exc


class WalletSignatureVerifier:
    """
    Подпись wallet-провайдера проверяет сам провайдер:
    заголовки передачи + webhook_id + событие -> verify-webhook-signature.
    """

    endpoint = "v1/notifications/verify-webhook-signature"

    def __init__(self, api: ProviderApiClient, config: PaymentsConfig):
        self.api = api
        self.webhook_id = config.provider("wallet").webhook_id

    def verify(self, payload: bytes, headers: Mapping[str, str]) -> None:
        if not self.webhook_id:
            raise WebhookConfigurationError("Wallet webhook id is not configured.")

        fields = {}
        for name, header in WALLET_SIGNATURE_HEADERS.items():
            value = headers.get(header)
            if not value:
                raise SignatureError(f"Missing {header} header.")
            fields[name] = value

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise SignatureError("Wallet webhook payload is not valid JSON.") from exc

        try:
            body = self.api.request(
                "wallet",
                self.endpoint,
                "POST",
                {**fields, "webhook_id": self.webhook_id, "webhook_event": event},
            ).body
        except ApiError as exc:
            # проверить не смогли = не доверяем; провайдер доставит повторно
            raise SignatureError(f"Wallet signature verification failed: {exc}") from exc

        if (body or {}).get("verification_status") != "SUCCESS":
            raise SignatureError("Wallet signature verification status is not SUCCESS.")


class ApiKeyVerifier:
    """Импорт банковских транзакций: общий ключ в X-API-Key, сравнение за константное время."""

    header = "X-API-Key"

    def __init__(self, config: PaymentsConfig):
        self.api_key = config.bank_webhook_api_key

    def verify(self, payload: bytes, headers: Mapping[str, str]) -> None:
        if not self.api_key:
            raise WebhookConfigurationError("Bank webhook API key is not configured.")

        supplied = headers.get(self.header) or ""
        if not hmac.compare_digest(supplied.encode("utf-8"), self.api_key.encode("utf-8")):
            raise SignatureError("Invalid bank webhook API key.")
