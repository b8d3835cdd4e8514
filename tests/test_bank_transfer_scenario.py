import pytest


@pytest.mark.django_db
def test_bank_transfer_order_is_settled_by_exact_transaction_import(api_client, container, product_factory, post_bank_import, mailoutbox):
    """
    GIVEN:
        - заказ 49.99 EUR, оплата банковским переводом
    WHEN:
        - payment: покупатель получает реквизиты и ссылку REF-<id>, заказ on_hold
        - импорт банковских транзакций:
            * чужая ссылка
            * наша ссылка, но сумма не та
            * наша ссылка (в другом регистре, с пробелами) и точная сумма
    THEN:
        - неизвестная ссылка = unresolved, неверная сумма = acknowledged без изменений
        - точное совпадение = paid, одно письмо
    """
    from apps.orders.models import Order

    product_factory(sku="TSHIRT", unit_price="49.99")
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
            "payment_method": "bank_transfer",
            "items": [{"sku": "TSHIRT", "qty": 1}],
        },
        format="json",
    )
    order_id = api_client.post("/api/v1/checkout/prepare/", data={}, format="json").json()["temp_order_id"]
    order = Order.objects.get(public_id=order_id)

    # ----------------------------------------
    # payment: реквизиты для перевода
    # ----------------------------------------
    resp = api_client.post(
        "/api/v1/checkout/payment/", data={"method": "bank_transfer", "temp_order_id": order_id}, format="json"
    )
    assert resp.status_code == 201, resp.content
    body = resp.json()
    reference = f"REF-{order.pk}"
    assert body["status"] == "on_hold"
    assert body["payment_reference"] == reference
    assert body["continuation"]["reference"] == reference
    assert body["continuation"]["amount"] == "49.99"
    assert body["continuation"]["iban"] == "SK3112000000198742637541"
    assert mailoutbox == []

    # ----------------------------------------
    # импорт транзакций
    # ----------------------------------------
    resp = post_bank_import(
        [
            {"reference": "REF-999999", "amount": "49.99", "currency": "EUR", "date": "2026-10-01"},
            {"reference": reference, "amount": "49.98", "currency": "EUR", "date": "2026-10-01"},
        ]
    )
    assert resp.status_code == 200
    items = resp.json()["items"]
    assert [i["result"] for i in items] == ["unresolved", "acknowledged"]
    assert Order.objects.get(pk=order.pk).status == Order.STATUS_ON_HOLD

    resp = post_bank_import([{"reference": f" {reference.lower()} ", "amount": "49.99", "currency": "EUR"}])

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "result": "applied", "order_id": order_id}
    order = Order.objects.get(pk=order.pk)
    assert order.status == Order.STATUS_PAID
    assert order.payment_reference == reference
    assert len(mailoutbox) == 1

    # тот же импорт повторно: уже оплачен, ничего не меняется
    again = post_bank_import([{"reference": reference, "amount": "49.99", "currency": "EUR"}])
    assert again.json()["result"] == "acknowledged"
    assert len(mailoutbox) == 1


@pytest.mark.django_db
def test_bank_import_requires_api_key(container, post_bank_import):
    assert post_bank_import([], api_key=None).status_code == 400
    assert post_bank_import([], api_key="wrong").status_code == 400
    resp = post_bank_import([])
    assert resp.status_code == 200
    assert resp.json()["result"] == "acknowledged"


@pytest.mark.django_db
def test_bank_import_with_malformed_transaction_is_rejected(container, post_bank_import):
    resp = post_bank_import([{"amount": "10.00"}])

    assert resp.status_code == 400
    assert "reference" in resp.json()["detail"]


@pytest.mark.django_db
@pytest.mark.parametrize("bad_amount", ["NaN", "Infinity", "-Infinity", "1e999"])
def test_bank_import_with_non_finite_amount_rejects_whole_batch(container, pending_order, post_bank_import, mailoutbox, bad_amount):
    """
    GIVEN:
        - заказ on_hold с ссылкой REF-<id>
    WHEN:
        - импорт: сначала точная оплата заказа, затем транзакция с невалидной суммой
    THEN:
        - 400 на весь импорт
        - ни одна транзакция не применена: заказ остаётся on_hold, писем нет
    """
    from apps.orders.models import Order
    from apps.payments.logic.initiate_payment import initiate_payment

    order = pending_order(method="bank_transfer")
    initiate_payment(
        lifecycle=container.lifecycle,
        gateways=container.gateways,
        config=container.config,
        order_id=order.public_id,
        method="bank_transfer",
    )
    reference = f"REF-{order.id}"

    resp = post_bank_import(
        [
            {"reference": reference, "amount": "49.99", "currency": "EUR"},
            {"reference": reference, "amount": bad_amount, "currency": "EUR"},
        ]
    )

    assert resp.status_code == 400
    assert resp.json()["received"] is False
    assert "transactions[1].amount" in resp.json()["detail"]
    assert Order.objects.get(public_id=order.public_id).status == Order.STATUS_ON_HOLD
    assert mailoutbox == []
