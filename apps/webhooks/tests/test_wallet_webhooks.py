import pytest

VERIFY_ENDPOINT = "v1/notifications/verify-webhook-signature"


def _capture_event(kind: str, order, capture_id: str = "CAP-1", **resource):
    body = {
        "id": capture_id,
        "status": kind.rsplit(".", 1)[-1],
        "custom_id": str(order.public_id),
        "amount": {"currency_code": "EUR", "value": "49.99"},
        "supplementary_data": {"related_ids": {"order_id": "WO-1"}},
    }
    body.update(resource)
    return {"id": f"WH-{kind}", "event_type": kind, "resource": body}


def _refund_event(order, refund_id: str, value: str):
    return {
        "id": f"WH-{refund_id}",
        "event_type": "PAYMENT.CAPTURE.REFUNDED",
        "resource": {
            "id": refund_id,
            "status": "COMPLETED",
            "custom_id": str(order.public_id),
            "amount": {"currency_code": "EUR", "value": value},
            "links": [
                {"rel": "self", "href": f"https://wallet.test/v2/payments/refunds/{refund_id}"},
                {"rel": "up", "href": "https://wallet.test/v2/payments/captures/CAP-1"},
            ],
        },
    }


@pytest.fixture
def wallet_order(container, fake_api, pending_order):
    """Заказ в pending_payment с wallet-заказом WO-1 у провайдера; подпись проходит."""
    from apps.payments.logic.initiate_payment import initiate_payment

    fake_api.on(
        "POST",
        "v2/checkout/orders",
        {"id": "WO-1", "status": "CREATED", "links": [{"rel": "approve", "href": "https://wallet.test/approve/WO-1"}]},
    )
    fake_api.on("POST", VERIFY_ENDPOINT, {"verification_status": "SUCCESS"})
    order = pending_order(method="wallet")
    initiate_payment(
        lifecycle=container.lifecycle,
        gateways=container.gateways,
        config=container.config,
        order_id=order.public_id,
        method="wallet",
    )
    return order


@pytest.mark.django_db
def test_capture_completed_finalizes_order(wallet_order, fake_api, post_wallet_webhook, mailoutbox):
    """
    GIVEN:
        - покупатель подтвердил оплату в кошельке (WO-1)
    WHEN:
        - PAYMENT.CAPTURE.COMPLETED с capture id CAP-1
    THEN:
        - подпись проверена у провайдера (webhook_id + заголовки передачи)
        - заказ paid с reference CAP-1
    """
    from apps.orders.models import Order

    resp = post_wallet_webhook(_capture_event("PAYMENT.CAPTURE.COMPLETED", wallet_order))

    assert resp.status_code == 200, resp.content
    assert resp.json() == {"received": True, "result": "applied", "order_id": str(wallet_order.public_id)}

    order = Order.objects.get(public_id=wallet_order.public_id)
    assert order.status == Order.STATUS_PAID
    assert order.payment_provider == "wallet"
    assert order.payment_reference == "CAP-1"
    assert len(mailoutbox) == 1

    verify = fake_api.calls_to(VERIFY_ENDPOINT)[0]["body"]
    assert verify["webhook_id"] == "WH-TEST-1"
    assert verify["transmission_id"] == "tx-id-1"
    assert verify["webhook_event"]["event_type"] == "PAYMENT.CAPTURE.COMPLETED"


@pytest.mark.django_db
def test_failed_verification_is_rejected(wallet_order, fake_api, post_wallet_webhook):
    from apps.orders.models import Order

    fake_api.replace("POST", VERIFY_ENDPOINT, {"verification_status": "FAILURE"})

    resp = post_wallet_webhook(_capture_event("PAYMENT.CAPTURE.COMPLETED", wallet_order))

    assert resp.status_code == 400
    assert resp.json()["received"] is False
    assert Order.objects.get(public_id=wallet_order.public_id).status == Order.STATUS_PENDING_PAYMENT


@pytest.mark.django_db
def test_missing_transmission_header_is_rejected_without_provider_call(wallet_order, fake_api, post_wallet_webhook):
    resp = post_wallet_webhook(
        _capture_event("PAYMENT.CAPTURE.COMPLETED", wallet_order),
        HTTP_PAYPAL_TRANSMISSION_SIG="",
    )

    assert resp.status_code == 400
    assert "paypal-transmission-sig" in resp.json()["detail"]
    assert fake_api.calls_to(VERIFY_ENDPOINT) == []


@pytest.mark.django_db
def test_capture_denied_marks_order_failed(wallet_order, post_wallet_webhook):
    from apps.orders.models import Order

    resp = post_wallet_webhook(
        _capture_event("PAYMENT.CAPTURE.DENIED", wallet_order, status_details={"reason": "DECLINED_BY_RISK_FRAUD_FILTERS"})
    )

    assert resp.json()["result"] == "applied"
    order = Order.objects.get(public_id=wallet_order.public_id)
    assert order.status == Order.STATUS_FAILED
    assert "DECLINED_BY_RISK_FRAUD_FILTERS" in order.failure_reason


@pytest.mark.django_db
def test_capture_pending_puts_order_on_hold(wallet_order, post_wallet_webhook):
    from apps.orders.models import Order

    resp = post_wallet_webhook(
        _capture_event("PAYMENT.CAPTURE.PENDING", wallet_order, status_details={"reason": "PENDING_REVIEW"})
    )

    assert resp.json()["result"] == "applied"
    assert Order.objects.get(public_id=wallet_order.public_id).status == Order.STATUS_ON_HOLD


@pytest.mark.django_db
def test_refund_then_reversal_settle_the_whole_balance(wallet_order, post_wallet_webhook):
    """
    GIVEN:
        - заказ 49.99 EUR оплачен кошельком (CAP-1)
    WHEN:
        - PAYMENT.CAPTURE.REFUNDED на 10.00 (дважды)
        - затем PAYMENT.CAPTURE.REVERSED
    THEN:
        - возврат находит заказ по ссылке rel=up на capture
        - дубль не учитывается второй раз
        - reversal возвращает остаток 39.99 -> refunded
    """
    from apps.orders.models import Order, OrderRefund

    post_wallet_webhook(_capture_event("PAYMENT.CAPTURE.COMPLETED", wallet_order))

    first = post_wallet_webhook(_refund_event(wallet_order, "WR-1", "10.00"))
    duplicate = post_wallet_webhook(_refund_event(wallet_order, "WR-1", "10.00"))

    assert first.json()["result"] == "applied"
    assert duplicate.json()["result"] == "acknowledged"
    order = Order.objects.get(public_id=wallet_order.public_id)
    assert order.status == Order.STATUS_PARTIALLY_REFUNDED
    assert str(order.refunded_total) == "10.00"

    reversed_ = post_wallet_webhook(_capture_event("PAYMENT.CAPTURE.REVERSED", wallet_order))

    assert reversed_.json()["result"] == "applied"
    order = Order.objects.get(public_id=wallet_order.public_id)
    assert order.status == Order.STATUS_REFUNDED
    assert str(order.refunded_total) == "49.99"
    reversal = OrderRefund.objects.get(order=order, provider_refund_id="reversal:CAP-1")
    assert str(reversal.amount) == "39.99"


@pytest.mark.django_db
def test_refund_in_foreign_currency_is_acknowledged_without_change(wallet_order, post_wallet_webhook):
    from apps.orders.models import Order

    post_wallet_webhook(_capture_event("PAYMENT.CAPTURE.COMPLETED", wallet_order))
    event = _refund_event(wallet_order, "WR-9", "10.00")
    event["resource"]["amount"]["currency_code"] = "USD"

    resp = post_wallet_webhook(event)

    assert resp.json()["result"] == "acknowledged"
    assert Order.objects.get(public_id=wallet_order.public_id).status == Order.STATUS_PAID


@pytest.mark.django_db
def test_order_approved_event_puts_order_on_hold(wallet_order, post_wallet_webhook):
    from apps.orders.models import Order

    resp = post_wallet_webhook(
        {
            "id": "WH-APPROVED",
            "event_type": "CHECKOUT.ORDER.APPROVED",
            "resource": {"id": "WO-1", "status": "APPROVED", "purchase_units": [{"custom_id": str(wallet_order.public_id)}]},
        }
    )

    assert resp.json()["result"] == "applied"
    assert Order.objects.get(public_id=wallet_order.public_id).status == Order.STATUS_ON_HOLD
