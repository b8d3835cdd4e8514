"""
Composition root.

Всё собирается ОДИН раз: конфиг, API client, адаптеры, менеджер заказов,
reconciler. Views берут готовые объекты через get_container(),
тесты подменяют get_container через monkeypatch.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from django.conf import settings

from apps.checkout.store import CheckoutSessionStore
from apps.orders.events import OrderEventBus
from apps.orders.logic.lifecycle import OrderLifecycleManager
from apps.orders.notifications import send_order_confirmation
from apps.orders.repository import DjangoOrderRepository
from apps.payments.api_client import ProviderApiClient
from apps.payments.config import PaymentsConfig
from apps.payments.logic.mandates import sync_mandate_status
from apps.payments.providers.card import CardGateway
from apps.payments.providers.direct_debit import DirectDebitGateway
from apps.payments.providers.manual import ManualTransferGateway
from apps.payments.providers.registry import GatewayRegistry
from apps.payments.providers.wallet import WalletGateway
from apps.webhooks.reconciler import WebhookReconciler
from apps.webhooks.verifiers import ApiKeyVerifier, CardSignatureVerifier, WalletSignatureVerifier


@dataclass(frozen=True)
class Container:
    config: PaymentsConfig
    api_client: ProviderApiClient
    gateways: GatewayRegistry
    events: OrderEventBus
    sessions: CheckoutSessionStore
    lifecycle: OrderLifecycleManager
    reconciler: WebhookReconciler


def build_gateways(config: PaymentsConfig, api_client: ProviderApiClient) -> GatewayRegistry:
    adapters = []
    if config.capability("card_enabled"):
        adapters.append(CardGateway(api_client, config))
    if config.capability("wallet_enabled"):
        adapters.append(WalletGateway(api_client, config))
    if config.capability("direct_debit_enabled"):
        adapters.append(DirectDebitGateway(config))
    if config.capability("bank_transfer_enabled"):
        adapters.append(ManualTransferGateway(config))
    return GatewayRegistry(adapters)


def build_container(*, config: PaymentsConfig | None = None, api_client=None) -> Container:
    config = config or PaymentsConfig.from_settings(settings.PAYMENTS)
    api_client = api_client or ProviderApiClient(config)

    events = OrderEventBus()
    events.subscribe_finalized(send_order_confirmation)
    events.subscribe_status_changed(sync_mandate_status)

    gateways = build_gateways(config, api_client)
    sessions = CheckoutSessionStore()
    lifecycle = OrderLifecycleManager(
        repository=DjangoOrderRepository(),
        events=events,
        sessions=sessions,
        gateways=gateways,
        config=config,
    )

    verifiers = {"bank_transfer": ApiKeyVerifier(config)}
    if "card" in config.providers:
        verifiers["card"] = CardSignatureVerifier(config)
    if "wallet" in config.providers:
        verifiers["wallet"] = WalletSignatureVerifier(api_client, config)

    reconciler = WebhookReconciler(lifecycle=lifecycle, verifiers=verifiers, config=config)

    return Container(
        config=config,
        api_client=api_client,
        gateways=gateways,
        events=events,
        sessions=sessions,
        lifecycle=lifecycle,
        reconciler=reconciler,
    )


@lru_cache(maxsize=1)
def get_container() -> Container:
    return build_container()
