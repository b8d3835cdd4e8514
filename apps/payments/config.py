# apps/payments/config.py
"""
Типизированная платёжная конфигурация.

settings.PAYMENTS читается ОДИН раз в composition root (core/container.py)
и дальше передаётся в компоненты по ссылке. Core видит только булевы
capability-поля, объявленные в Capabilities, никаких строковых ключей "на лету".
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class Capabilities:
    card_enabled: bool = True
    card_sca_support: bool = True
    card_automatic_payment_methods: bool = False
    card_webhooks: bool = True
    wallet_enabled: bool = True
    wallet_webhooks: bool = True
    direct_debit_enabled: bool = True
    bank_transfer_enabled: bool = True
    transaction_logs: bool = True
    debug_mode: bool = False
    skip_webhook_signature_verification: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "Capabilities":
        raw = raw or {}
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise KeyError(f"Unknown payment capabilities: {sorted(unknown)}")
        return cls(**{k: bool(v) for k, v in raw.items()})


@dataclass(frozen=True)
class ProviderSettings:
    name: str
    base_url: str
    auth: str = "none"  # bearer | oauth | none
    secret_key: str = ""
    publishable_key: str = ""
    client_id: str = ""
    client_secret: str = ""
    token_endpoint: str = ""
    webhook_secret: str = ""
    webhook_id: str = ""
    body_format: str = "json"  # json | form
    extra_headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_mapping(cls, name: str, raw: Mapping[str, Any]) -> "ProviderSettings":
        return cls(
            name=name,
            base_url=raw.get("BASE_URL", ""),
            auth=raw.get("AUTH", "none"),
            secret_key=raw.get("SECRET_KEY", "") or "",
            publishable_key=raw.get("PUBLISHABLE_KEY", "") or "",
            client_id=raw.get("CLIENT_ID", "") or "",
            client_secret=raw.get("CLIENT_SECRET", "") or "",
            token_endpoint=raw.get("TOKEN_ENDPOINT", "") or "",
            webhook_secret=raw.get("WEBHOOK_SECRET", "") or "",
            webhook_id=raw.get("WEBHOOK_ID", "") or "",
            body_format=raw.get("BODY_FORMAT", "json"),
            extra_headers=MappingProxyType(dict(raw.get("EXTRA_HEADERS") or {})),
        )


@dataclass(frozen=True)
class BankDetails:
    account_name: str = ""
    iban: str = ""
    bic: str = ""
    bank_name: str = ""


@dataclass(frozen=True)
class PaymentsConfig:
    currency: str = "EUR"
    capabilities: Capabilities = field(default_factory=Capabilities)
    providers: Mapping[str, ProviderSettings] = field(default_factory=lambda: MappingProxyType({}))
    bank: BankDetails = field(default_factory=BankDetails)
    bank_webhook_api_key: str = ""
    shipping_flat_rate: Decimal = Decimal("0.00")
    http_timeout: float = 30
    http_max_attempts: int = 3
    http_retry_wait: float = 0.5
    token_expiry_margin: int = 60
    webhook_tolerance: int = 300
    pending_order_ttl_minutes: int = 60
    reference_prefix: str = "REF-"
    mandate_prefix: str = "MNDT-"
    return_url: str = ""
    cancel_url: str = ""
    thank_you_url: str = "/checkout/thank-you/{order_id}/"
    checkout_url: str = "/checkout/"

    def capability(self, name: str) -> bool:
        if name not in {f.name for f in fields(Capabilities)}:
            raise KeyError(f"Unknown payment capability: {name}")
        return bool(getattr(self.capabilities, name))

    def provider(self, name: str) -> ProviderSettings:
        try:
            return self.providers[name]
        except KeyError:
            raise KeyError(f"Payment provider '{name}' is not configured.")

    @property
    def signature_bypass_active(self) -> bool:
        """Пропуск проверки подписи webhook'ов: только вместе с debug_mode. Операционный риск."""
        return self.capabilities.skip_webhook_signature_verification and self.capabilities.debug_mode

    @classmethod
    def from_settings(cls, raw: Mapping[str, Any]) -> "PaymentsConfig":
        bank = raw.get("BANK") or {}
        return cls(
            currency=raw.get("CURRENCY", "EUR"),
            capabilities=Capabilities.from_mapping(raw.get("CAPABILITIES")),
            providers=MappingProxyType(
                {name: ProviderSettings.from_mapping(name, p) for name, p in (raw.get("PROVIDERS") or {}).items()}
            ),
            bank=BankDetails(
                account_name=bank.get("ACCOUNT_NAME", "") or "",
                iban=bank.get("IBAN", "") or "",
                bic=bank.get("BIC", "") or "",
                bank_name=bank.get("BANK_NAME", "") or "",
            ),
            bank_webhook_api_key=raw.get("BANK_WEBHOOK_API_KEY", "") or "",
            shipping_flat_rate=Decimal(str(raw.get("SHIPPING_FLAT_RATE", "0.00"))),
            http_timeout=raw.get("HTTP_TIMEOUT", 30),
            http_max_attempts=raw.get("HTTP_MAX_ATTEMPTS", 3),
            http_retry_wait=raw.get("HTTP_RETRY_WAIT", 0.5),
            token_expiry_margin=raw.get("TOKEN_EXPIRY_MARGIN", 60),
            webhook_tolerance=raw.get("WEBHOOK_TOLERANCE", 300),
            pending_order_ttl_minutes=raw.get("PENDING_ORDER_TTL_MINUTES", 60),
            reference_prefix=raw.get("REFERENCE_PREFIX", "REF-"),
            mandate_prefix=raw.get("MANDATE_PREFIX", "MNDT-"),
            return_url=raw.get("RETURN_URL", ""),
            cancel_url=raw.get("CANCEL_URL", ""),
            thank_you_url=raw.get("THANK_YOU_URL", "/checkout/thank-you/{order_id}/"),
            checkout_url=raw.get("CHECKOUT_URL", "/checkout/"),
        )
