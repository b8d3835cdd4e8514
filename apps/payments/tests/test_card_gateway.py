import pytest


@pytest.fixture
def card(container):
    return container.gateways.get("card")


@pytest.fixture
def checkout_data():
    from apps.payments.providers.port import CheckoutData

    return CheckoutData(method="card", return_url="http://testserver/api/v1/checkout/return/card/")


@pytest.mark.django_db
def test_initiate_creates_intent_in_minor_units(card, fake_api, pending_order, checkout_data):
    """
    GIVEN:
        - заказ 49.99 EUR
    WHEN:
        - initiate
    THEN:
        - payment intent на 4999 "eur" с order_id в metadata
        - continuation несёт client_secret и publishable key, но не secret key
    """
    fake_api.on(
        "POST",
        "payment_intents",
        {"id": "pi_1", "status": "requires_action", "client_secret": "pi_1_secret", "next_action": {"type": "use_stripe_sdk"}},
    )
    order = pending_order()

    handle = card.initiate(checkout_data, order)

    body = fake_api.calls_to("payment_intents")[0]["body"]
    assert body["amount"] == 4999
    assert body["currency"] == "eur"
    assert body["metadata"] == {"order_id": str(order.public_id)}
    assert body["receipt_email"] == "jana@example.com"
    assert body["payment_method_options"] == {"card": {"request_three_d_secure": "automatic"}}

    assert handle.provider == "card"
    assert handle.external_ref == "pi_1"
    assert dict(handle.continuation) == {
        "client_secret": "pi_1_secret",
        "publishable_key": "pk_test_123",
        "requires_action": True,
    }
    assert "sk_test_123" not in str(handle.continuation)


@pytest.mark.django_db
def test_confirm_rereads_intent_or_confirms_with_payment_method(card, fake_api):
    from apps.payments.providers.port import OUTCOME_SUCCEEDED, PaymentHandle

    handle = PaymentHandle(provider="card", external_ref="pi_1", provider_status="requires_action")
    fake_api.on("GET", "payment_intents/pi_1", {"id": "pi_1", "status": "succeeded", "latest_charge": "ch_1"})
    fake_api.on("POST", "payment_intents/pi_1/confirm", {"id": "pi_1", "status": "succeeded", "latest_charge": {"id": "ch_2"}})

    reread = card.confirm(handle)
    confirmed = card.confirm(handle, {"payment_method": "pm_card_visa"})

    assert reread.status == OUTCOME_SUCCEEDED
    assert reread.transaction_id == "ch_1"
    assert confirmed.transaction_id == "ch_2"
    assert fake_api.calls_to("payment_intents/pi_1/confirm")[0]["body"]["payment_method"] == "pm_card_visa"


@pytest.mark.parametrize(
    "intent, expected_status, expected_message",
    [
        ({"id": "pi_1", "status": "succeeded", "charges": {"data": [{"id": "ch_9"}]}}, "succeeded", ""),
        ({"id": "pi_1", "status": "requires_action", "next_action": {"type": "redirect_to_url"}}, "requires_action", "Additional authentication required."),
        ({"id": "pi_1", "status": "processing"}, "pending", ""),
        ({"id": "pi_1", "status": "canceled", "cancellation_reason": "abandoned"}, "failed", "abandoned"),
        (
            {"id": "pi_1", "status": "requires_payment_method", "last_payment_error": {"message": "Insufficient funds."}},
            "failed",
            "Insufficient funds.",
        ),
    ],
)
def test_evaluate_maps_intent_status(payments_config, intent, expected_status, expected_message):
    from apps.payments.providers.card import CardGateway

    outcome = CardGateway(api=None, config=payments_config).evaluate(intent)

    assert outcome.status == expected_status
    assert outcome.message == expected_message


def test_succeeded_without_charges_falls_back_to_intent_id(payments_config):
    from apps.payments.providers.card import CardGateway

    outcome = CardGateway(api=None, config=payments_config).evaluate({"id": "pi_1", "status": "succeeded"})

    assert outcome.transaction_id == "pi_1"


@pytest.mark.django_db
def test_provider_decline_is_not_retryable_but_outage_is(card, fake_api, pending_order, checkout_data):
    from apps.payments.errors import GatewayError, ProviderError, TransportError

    order = pending_order()
    fake_api.on(
        "POST",
        "payment_intents",
        ProviderError("card_declined", "Your card was declined.", status_code=402),
        TransportError("Timeout calling https://card.test/v1/payment_intents"),
    )

    with pytest.raises(GatewayError) as declined:
        card.initiate(checkout_data, order)
    with pytest.raises(GatewayError) as outage:
        card.initiate(checkout_data, order)

    assert declined.value.retryable is False
    assert declined.value.code == "card_declined"
    assert str(declined.value) == "Your card was declined."
    assert outage.value.retryable is True
    assert outage.value.code == "transport_error"


@pytest.mark.django_db
def test_refund_targets_intent_or_charge(card, fake_api, pending_order):
    from dataclasses import replace
    from decimal import Decimal

    from apps.orders.domain import PaymentRef

    order = pending_order()
    fake_api.on("POST", "refunds", {"id": "re_1"}, {"id": "re_2"})

    by_intent = card.refund(replace(order, payment_ref=PaymentRef("card", "pi_1")), Decimal("10.00"))
    by_charge = card.refund(replace(order, payment_ref=PaymentRef("card", "ch_1")), Decimal("10.00"))

    first, second = fake_api.calls_to("refunds")
    assert by_intent == "re_1"
    assert by_charge == "re_2"
    assert first["body"]["payment_intent"] == "pi_1"
    assert first["body"]["amount"] == 1000
    assert second["body"]["charge"] == "ch_1"
    assert "payment_intent" not in second["body"]


@pytest.mark.django_db
def test_refund_without_reference_is_gateway_error(card, pending_order):
    from decimal import Decimal

    from apps.payments.errors import GatewayError

    with pytest.raises(GatewayError, match="no card payment reference"):
        card.refund(pending_order(), Decimal("1.00"))
