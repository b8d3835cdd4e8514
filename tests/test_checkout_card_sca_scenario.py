import pytest


@pytest.mark.django_db
def test_card_checkout_with_sca_then_duplicate_webhook(api_client, post_card_webhook, container, product_factory, fake_api, mailoutbox):
    """
    GIVEN:
        - товар 49.99 EUR, оплата картой с 3-D Secure
    WHEN:
        - prepare -> payment (intent требует SCA) -> confirm после challenge
        - затем провайдер шлёт charge.succeeded по тому же платежу
    THEN:
        - заказ paid по tx_123, одно письмо
        - webhook подтверждён как дубль: статус и письма не меняются
    """
    from apps.orders.models import Order, OrderStatusEvent
    from apps.payments.models import OrderPaymentHandle

    product_factory(sku="TSHIRT", unit_price="49.99")

    # ----------------------------------------
    # prepare
    # ----------------------------------------
    api_client.patch(
        "/api/v1/checkout/state/",
        data={
            "email": "jana@example.com",
            "shipping_address": {
                "first_name": "Jana",
                "last_name": "Novak",
                "address_1": "Hlavna 1",
                "postcode": "81101",
                "city": "Bratislava",
                "country": "SK",
            },
            "payment_method": "card",
            "items": [{"sku": "TSHIRT", "qty": 1}],
        },
        format="json",
    )
    prepared = api_client.post("/api/v1/checkout/prepare/", data={}, format="json").json()
    order_id = prepared["temp_order_id"]
    assert prepared["total"] == "49.99"

    # ----------------------------------------
    # payment: intent требует SCA
    # ----------------------------------------
    fake_api.on(
        "POST",
        "payment_intents",
        {
            "id": "pi_123",
            "status": "requires_action",
            "client_secret": "pi_123_secret_abc",
            "next_action": {"type": "use_stripe_sdk"},
        },
    )
    started = api_client.post(
        "/api/v1/checkout/payment/", data={"method": "card", "temp_order_id": order_id}, format="json"
    )
    assert started.status_code == 201
    body = started.json()
    assert body["status"] == "pending_payment"
    assert body["payment_reference"] == "pi_123"
    assert body["continuation"]["requires_action"] is True
    assert body["continuation"]["client_secret"] == "pi_123_secret_abc"
    assert body["continuation"]["publishable_key"] == "pk_test_123"

    sent = fake_api.calls_to("payment_intents")[0]["body"]
    assert sent["amount"] == 4999
    assert sent["currency"] == "eur"
    assert sent["metadata"] == {"order_id": order_id}

    # ----------------------------------------
    # confirm после challenge: статус перечитываем у провайдера
    # ----------------------------------------
    fake_api.on("GET", "payment_intents/pi_123", {"id": "pi_123", "status": "succeeded", "latest_charge": "tx_123"})
    confirmed = api_client.post(
        "/api/v1/checkout/confirm/",
        data={"order_reference": order_id, "payment_reference": "pi_123"},
        format="json",
    )
    assert confirmed.status_code == 200, confirmed.content
    assert confirmed.json()["status"] == "paid"
    assert confirmed.json()["redirect_url"] == f"/checkout/thank-you/{order_id}/"

    order = Order.objects.get(public_id=order_id)
    assert order.payment_provider == "card"
    assert order.payment_reference == "tx_123"
    assert order.is_temp is False
    assert len(mailoutbox) == 1
    # checkout-сессия очищена
    assert api_client.get("/api/v1/checkout/state/").json()["temp_order_id"] == ""

    # ----------------------------------------
    # дубль: charge.succeeded по уже оплаченному заказу
    # ----------------------------------------
    event = {
        "id": "evt_1",
        "type": "charge.succeeded",
        "data": {"object": {"id": "tx_123", "payment_intent": "pi_123", "metadata": {"order_id": order_id}}},
    }
    resp = post_card_webhook(event)

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "result": "acknowledged", "order_id": order_id}
    assert Order.objects.get(public_id=order_id).status == Order.STATUS_PAID
    assert len(mailoutbox) == 1
    assert OrderStatusEvent.objects.filter(order=order, to_status=Order.STATUS_PAID).count() == 1

    handle = OrderPaymentHandle.objects.get(order=order, is_active=True)
    assert list(handle.events.values_list("action", flat=True)) == ["create", "confirm", "webhook"]


@pytest.mark.django_db
def test_confirm_repeated_after_payment_does_not_call_provider_again(api_client, container, pending_order, fake_api, mailoutbox):
    from apps.payments.logic.initiate_payment import initiate_payment

    order = pending_order()
    fake_api.on("POST", "payment_intents", {"id": "pi_1", "status": "requires_confirmation", "client_secret": "s"})
    fake_api.on("GET", "payment_intents/pi_1", {"id": "pi_1", "status": "succeeded", "latest_charge": "ch_1"})
    initiate_payment(
        lifecycle=container.lifecycle,
        gateways=container.gateways,
        config=container.config,
        order_id=order.public_id,
        method="card",
    )

    data = {"order_reference": str(order.public_id), "payment_reference": "pi_1"}
    first = api_client.post("/api/v1/checkout/confirm/", data=data, format="json").json()
    second = api_client.post("/api/v1/checkout/confirm/", data=data, format="json").json()

    assert first["status"] == second["status"] == "paid"
    assert first["already_finalized"] is False
    assert second["already_finalized"] is True
    assert len(fake_api.calls_to("payment_intents/pi_1")) == 1
    assert len(mailoutbox) == 1
