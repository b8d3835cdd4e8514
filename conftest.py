# conftest.py
import hashlib
import hmac
import json
import time
from decimal import Decimal
from types import MappingProxyType

import pytest
from django.contrib.auth import get_user_model
from django.contrib.sessions.backends.db import SessionStore
from rest_framework.test import APIClient

from apps.checkout.state import CartLine, CheckoutState
from apps.payments.api_client import ApiResponse
from apps.payments.config import BankDetails, Capabilities, PaymentsConfig, ProviderSettings

JWT_LOGIN_URL = "/api/v1/auth/login/"

CARD_WEBHOOK_SECRET = "whsec_test_secret"
WALLET_WEBHOOK_ID = "WH-TEST-1"
BANK_API_KEY = "bank-import-key"

ADDRESS = {
    "first_name": "Jana",
    "last_name": "Novak",
    "address_1": "Hlavna 1",
    "postcode": "81101",
    "city": "Bratislava",
    "country": "SK",
}


@pytest.fixture
def user_factory(db):
    def _make_user(username: str, password: str = "pass12345", **kwargs):
        return get_user_model().objects.create_user(username=username, password=password, **kwargs)

    return _make_user


@pytest.fixture
def api_client(db):
    return APIClient()


@pytest.fixture
def auth_client(api_client, user_factory):
    """
    Возвращает (client, user) с Authorization: Bearer <access>.
    Аутентификация строго как в проде - через JWT login endpoint.
    """

    def _login(username: str = "user", password: str = "pass12345", **user_kwargs):
        user = user_factory(username=username, password=password, **user_kwargs)

        resp = api_client.post(JWT_LOGIN_URL, data={"username": username, "password": password}, format="json")
        assert resp.status_code == 200, resp.content

        access = resp.json().get("access")
        assert access, f"Login response has no 'access' token. Got: {resp.json()}"

        api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
        return api_client, user

    return _login


@pytest.fixture
def staff_client(auth_client):
    return auth_client(username="staff", is_staff=True)


# === каталог / checkout ===


@pytest.fixture
def product_factory(db):
    from apps.products.models import Product

    def _make(sku: str = "TSHIRT", unit_price="49.99", tax_rate="0.00", **kwargs):
        kwargs.setdefault("name", f"Product {sku}")
        return Product.objects.create(
            sku=sku,
            unit_price=Decimal(unit_price),
            tax_rate=Decimal(tax_rate),
            **kwargs,
        )

    return _make


@pytest.fixture
def coupon_factory(db):
    from apps.products.models import Coupon

    def _make(code: str = "WELCOME10", kind: str = "percent", value="10", **kwargs):
        return Coupon.objects.create(code=code, kind=kind, value=Decimal(value), **kwargs)

    return _make


@pytest.fixture
def checkout_state():
    def _make(*items, method: str = "card", **changes):
        lines = items or (("TSHIRT", 1),)
        state = CheckoutState(
            email="jana@example.com",
            shipping_address=MappingProxyType(dict(ADDRESS)),
            payment_method=method,
            items=tuple(CartLine(sku=sku, qty=qty) for sku, qty in lines),
        )
        return state.with_changes(**changes) if changes else state

    return _make


@pytest.fixture
def session_key(db):
    session = SessionStore()
    session.create()
    return session.session_key


# === платёжный контур ===


def make_payments_config(**overrides) -> PaymentsConfig:
    capabilities = overrides.pop("capabilities", Capabilities())
    defaults = dict(
        currency="EUR",
        capabilities=capabilities,
        providers=MappingProxyType(
            {
                "card": ProviderSettings(
                    name="card",
                    base_url="https://card.test/v1/",
                    auth="bearer",
                    secret_key="sk_test_123",
                    publishable_key="pk_test_123",
                    webhook_secret=CARD_WEBHOOK_SECRET,
                    body_format="form",
                ),
                "wallet": ProviderSettings(
                    name="wallet",
                    base_url="https://wallet.test/",
                    auth="oauth",
                    client_id="client-id",
                    client_secret="client-secret",
                    token_endpoint="v1/oauth2/token",
                    webhook_id=WALLET_WEBHOOK_ID,
                ),
            }
        ),
        bank=BankDetails(
            account_name="Demo Shop s.r.o.",
            iban="SK3112000000198742637541",
            bic="TATRSKBX",
            bank_name="Demo Bank",
        ),
        bank_webhook_api_key=BANK_API_KEY,
        shipping_flat_rate=Decimal("0.00"),
        http_retry_wait=0,
        return_url="http://testserver/api/v1/checkout/return/",
        thank_you_url="/checkout/thank-you/{order_id}/",
        checkout_url="/checkout/",
    )
    defaults.update(overrides)
    return PaymentsConfig(**defaults)


class FakeApiClient:
    """
    ProviderApiClient без сети: ответы по (method, endpoint) в очереди.
    Последний ответ в очереди повторяется; Exception в очереди - бросается.
    """

    def __init__(self):
        self.calls = []
        self._responses = {}

    def on(self, method: str, endpoint: str, *results):
        self._responses.setdefault((method.upper(), endpoint), []).extend(results)
        return self

    def replace(self, method: str, endpoint: str, *results):
        self._responses[(method.upper(), endpoint)] = list(results)
        return self

    def request(self, provider, endpoint, method="GET", body=None, headers=None, *, idempotency_key=None):
        self.calls.append(
            {"provider": provider, "endpoint": endpoint, "method": method.upper(), "body": body, "headers": headers}
        )
        queue = self._responses.get((method.upper(), endpoint))
        if not queue:
            raise AssertionError(f"Unexpected provider call: {method} {endpoint}")
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        return ApiResponse(status_code=200, body=result, headers={})

    def calls_to(self, endpoint: str) -> list:
        return [c for c in self.calls if c["endpoint"] == endpoint]


@pytest.fixture
def config_factory():
    return make_payments_config


@pytest.fixture
def payments_config():
    return make_payments_config()


@pytest.fixture
def fake_api():
    return FakeApiClient()


@pytest.fixture
def container(db, payments_config, fake_api, monkeypatch):
    """Composition root на fake API client; views получают его через get_container()."""
    from core.container import build_container

    built = build_container(config=payments_config, api_client=fake_api)
    monkeypatch.setattr("core.container.get_container", lambda: built)
    return built


@pytest.fixture
def pending_order(container, product_factory, checkout_state, session_key):
    """Заказ в pending_payment, созданный как при prepare (товар 49.99 EUR)."""

    def _make(method: str = "card", price: str = "49.99"):
        from apps.products.models import Product

        if not Product.objects.filter(sku="TSHIRT").exists():
            product_factory(sku="TSHIRT", unit_price=price)
        state = checkout_state(method=method)
        container.sessions.save(session_key, state)
        return container.lifecycle.create_pending(session_key=session_key, state=state)

    return _make


# === webhooks ===


def card_signature(payload: bytes, secret: str = CARD_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Заголовок Stripe-Signature: t=<ts>,v1=HMAC-SHA256(secret, "<ts>.<payload>")."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def sign_card():
    return card_signature


@pytest.fixture
def post_card_webhook(api_client):
    def _post(event: dict, *, signature: str | None = None, signed: bool = True):
        payload = json.dumps(event).encode("utf-8")
        headers = {}
        if signed:
            headers["HTTP_STRIPE_SIGNATURE"] = signature or card_signature(payload)
        return api_client.post("/webhooks/card/", data=payload, content_type="application/json", **headers)

    return _post


WALLET_HEADERS = {
    "HTTP_PAYPAL_AUTH_ALGO": "SHA256withRSA",
    "HTTP_PAYPAL_CERT_URL": "https://api.wallet.test/certs/cert.pem",
    "HTTP_PAYPAL_TRANSMISSION_ID": "tx-id-1",
    "HTTP_PAYPAL_TRANSMISSION_SIG": "sig-value",
    "HTTP_PAYPAL_TRANSMISSION_TIME": "2026-01-01T10:00:00Z",
}


@pytest.fixture
def post_wallet_webhook(api_client):
    def _post(event: dict, **headers):
        payload = json.dumps(event).encode("utf-8")
        return api_client.post(
            "/webhooks/wallet/",
            data=payload,
            content_type="application/json",
            **{**WALLET_HEADERS, **headers},
        )

    return _post


@pytest.fixture
def post_bank_import(api_client):
    def _post(transactions: list, *, api_key: str | None = BANK_API_KEY):
        headers = {"HTTP_X_API_KEY": api_key} if api_key is not None else {}
        return api_client.post(
            "/webhooks/bank-transfer/",
            data=json.dumps({"transactions": transactions}).encode("utf-8"),
            content_type="application/json",
            **headers,
        )

    return _post
