import pytest
from decimal import Decimal


@pytest.fixture
def paid_card_order(container, pending_order):
    from apps.orders.domain import PaymentRef

    order = pending_order()
    return container.lifecycle.finalize(order.public_id, PaymentRef("card", "ch_1"), source="checkout").order


@pytest.mark.django_db
def test_order_endpoints_require_staff(api_client, auth_client, paid_card_order):
    url = f"/api/v1/orders/{paid_card_order.public_id}/"

    assert api_client.get(url).status_code == 401

    client, _user = auth_client(username="customer")
    assert client.get(url).status_code == 403


@pytest.mark.django_db
def test_staff_sees_order_with_settlement_flag_and_allowed_transitions(staff_client, paid_card_order):
    client, _user = staff_client

    resp = client.get(f"/api/v1/orders/{paid_card_order.public_id}/")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "paid"
    assert data["total"] == "49.99"
    assert data["payment_reference"] == "ch_1"
    assert data["settlement_confirmed"] is True
    assert data["allowed_transitions"] == ["partially_refunded", "refunded"]
    assert data["items"][0]["sku"] == "TSHIRT"


@pytest.mark.django_db
def test_staff_partial_refund_records_actor_in_history(staff_client, paid_card_order, fake_api):
    client, user = staff_client
    fake_api.on("POST", "refunds", {"id": "re_staff"})

    resp = client.post(
        f"/api/v1/orders/{paid_card_order.public_id}/refund/",
        data={"amount": "10.00", "reason": "Damaged item."},
        format="json",
    )

    assert resp.status_code == 200, resp.content
    data = resp.json()
    assert data["status"] == "partially_refunded"
    assert data["refunded_total"] == "10.00"
    assert data["refunds"][0]["provider_refund_id"] == "re_staff"

    history = client.get(f"/api/v1/orders/{paid_card_order.public_id}/status-events/").json()
    assert history[0]["to_status"] == "partially_refunded"
    assert history[0]["actor"] == user.username
    assert history[0]["source"] == "staff"


@pytest.mark.django_db
def test_staff_refund_over_balance_is_400(staff_client, paid_card_order):
    client, _user = staff_client

    resp = client.post(
        f"/api/v1/orders/{paid_card_order.public_id}/refund/",
        data={"amount": "60.00"},
        format="json",
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == "refund_rejected"


@pytest.mark.django_db
def test_staff_settles_on_hold_direct_debit_order(staff_client, container, pending_order):
    """
    GIVEN:
        - заказ on_hold после прямого дебета (settlement_confirmed=false)
    WHEN:
        - staff подтверждает поступление денег
    THEN:
        - paid, settlement_confirmed=true, мандат completed
    """
    from apps.payments.logic.initiate_payment import initiate_payment
    from apps.payments.models import MandateRecord

    client, _user = staff_client
    order = pending_order(method="direct_debit")
    initiate_payment(
        lifecycle=container.lifecycle,
        gateways=container.gateways,
        config=container.config,
        order_id=order.public_id,
        method="direct_debit",
        payment_data={"holder_name": "Jana Novak", "account_ref": "DE89 3704 0044 0532 0130 00", "mandate_accepted": True},
    )

    detail = client.get(f"/api/v1/orders/{order.public_id}/").json()
    assert detail["status"] == "on_hold"
    assert detail["settlement_confirmed"] is False

    resp = client.post(f"/api/v1/orders/{order.public_id}/settle/", data={}, format="json")

    assert resp.status_code == 200, resp.content
    assert resp.json()["status"] == "paid"
    assert resp.json()["settlement_confirmed"] is True
    assert MandateRecord.objects.get(order__public_id=order.public_id).status == MandateRecord.Status.COMPLETED


@pytest.mark.django_db
def test_staff_cannot_settle_pending_order(staff_client, pending_order):
    client, _user = staff_client
    order = pending_order()

    resp = client.post(f"/api/v1/orders/{order.public_id}/settle/", data={"reference": "X"}, format="json")

    assert resp.status_code == 400
    assert "status" in resp.json()


@pytest.mark.django_db
def test_staff_cancel_unpaid_order(staff_client, pending_order):
    client, _user = staff_client
    order = pending_order()

    resp = client.post(f"/api/v1/orders/{order.public_id}/cancel/", data={"reason": "Out of stock."}, format="json")

    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"


@pytest.mark.django_db
def test_staff_refund_of_pending_order_is_conflict(staff_client, pending_order):
    client, _user = staff_client
    order = pending_order()

    resp = client.post(f"/api/v1/orders/{order.public_id}/refund/", data={"amount": str(Decimal("1.00"))}, format="json")

    assert resp.status_code == 409
    assert resp.json()["code"] == "invalid_transition"
