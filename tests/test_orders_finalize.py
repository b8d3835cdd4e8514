import pytest


@pytest.mark.django_db
def test_finalize_marks_paid_clears_session_and_sends_one_email(container, pending_order, session_key, mailoutbox):
    """
    GIVEN:
        - заказ pending_payment, checkout-сессия с temp_order_id
    WHEN:
        - finalize(order, PaymentRef(card, tx_1))
    THEN:
        - paid, is_temp=False, ссылка на платёж сохранена
        - checkout-сессия очищена
        - ровно одно письмо-подтверждение
    """
    from apps.orders.domain import PaymentRef
    from apps.orders.models import Order

    order = pending_order()
    assert container.sessions.get(session_key).temp_order_id

    result = container.lifecycle.finalize(order.public_id, PaymentRef("card", "tx_1"), source="checkout")

    assert result.already_finalized is False
    assert result.order.status == Order.STATUS_PAID
    assert result.order.is_temp is False
    assert result.order.payment_ref == PaymentRef("card", "tx_1")
    assert result.order.paid_at is not None

    assert container.sessions.get(session_key).is_empty
    assert len(mailoutbox) == 1
    assert mailoutbox[0].to == ["jana@example.com"]
    assert str(order.public_id) in mailoutbox[0].subject


@pytest.mark.django_db
def test_finalize_twice_is_idempotent(container, pending_order, mailoutbox):
    """
    Второй finalize (webhook после confirm, повторная доставка) = успех без side-effects:
    одно письмо, один OrderStatusEvent -> paid, ссылка на платёж не перезаписана.
    """
    from apps.orders.domain import PaymentRef
    from apps.orders.models import Order, OrderStatusEvent

    order = pending_order()
    lc = container.lifecycle

    first = lc.finalize(order.public_id, PaymentRef("card", "tx_1"), source="confirm")
    second = lc.finalize(order.public_id, PaymentRef("card", "tx_other"), source="webhook")

    assert first.already_finalized is False
    assert second.already_finalized is True
    assert second.order.payment_ref.external_id == "tx_1"
    assert len(mailoutbox) == 1
    assert OrderStatusEvent.objects.filter(order__public_id=order.public_id, to_status=Order.STATUS_PAID).count() == 1


@pytest.mark.django_db
def test_finalize_requires_external_reference(container, pending_order):
    from apps.orders.domain import PaymentRef

    order = pending_order()

    with pytest.raises(ValueError):
        container.lifecycle.finalize(order.public_id, PaymentRef("card", "  "), source="checkout")


@pytest.mark.django_db
def test_finalize_of_failed_order_is_invalid_transition(container, pending_order, mailoutbox):
    from apps.orders.domain import PaymentRef
    from apps.orders.errors import InvalidTransition

    order = pending_order()
    container.lifecycle.mark_failed(order.public_id, reason="Card declined.", source="checkout")

    with pytest.raises(InvalidTransition):
        container.lifecycle.finalize(order.public_id, PaymentRef("card", "tx_1"), source="webhook")
    assert mailoutbox == []


@pytest.mark.django_db
def test_finalize_loses_race_to_concurrent_writer(container, pending_order, monkeypatch, mailoutbox):
    """
    GIVEN:
        - finalize прочитал статус pending_payment
        - между чтением и условным UPDATE другой процесс перевёл заказ в paid
    WHEN:
        - CAS (UPDATE ... WHERE status=pending_payment) обновляет 0 строк
    THEN:
        - этот вызов видит already_finalized
        - side-effects (письмо, событие paid) он НЕ выполняет
    """
    from django.utils import timezone

    from apps.orders.domain import PaymentRef
    from apps.orders.models import Order, OrderStatusEvent
    from apps.orders.repository import DjangoOrderRepository

    order = pending_order()
    original = DjangoOrderRepository._current_status
    calls = []

    def stale_read(self, public_id):
        calls.append(public_id)
        if len(calls) == 1:
            # конкурент успел раньше; мы всё ещё видим старый статус
            Order.objects.filter(public_id=public_id).update(
                status=Order.STATUS_PAID,
                payment_provider="card",
                payment_reference="tx_winner",
                paid_at=timezone.now(),
            )
            return Order.STATUS_PENDING_PAYMENT
        return original(self, public_id)

    monkeypatch.setattr("apps.orders.repository.DjangoOrderRepository._current_status", stale_read)

    result = container.lifecycle.finalize(order.public_id, PaymentRef("card", "tx_loser"), source="webhook")

    assert result.already_finalized is True
    assert result.order.payment_ref.external_id == "tx_winner"
    assert len(calls) == 2
    assert mailoutbox == []
    assert not OrderStatusEvent.objects.filter(order__public_id=order.public_id, to_status=Order.STATUS_PAID).exists()


@pytest.mark.django_db
def test_event_handler_failure_does_not_roll_back_payment(container, pending_order):
    from apps.orders.domain import PaymentRef
    from apps.orders.models import Order

    def broken(order):
        raise RuntimeError("smtp down")

    container.events.subscribe_finalized(broken)
    order = pending_order()

    result = container.lifecycle.finalize(order.public_id, PaymentRef("card", "tx_1"), source="checkout")

    assert result.order.status == Order.STATUS_PAID
    assert Order.objects.get(public_id=order.public_id).status == Order.STATUS_PAID


@pytest.mark.django_db
def test_finalize_reports_status_seen_by_cas_to_subscribers(container, pending_order, monkeypatch):
    """
    GIVEN:
        - finalize начинается, пока заказ pending_payment
        - до условного UPDATE другой канал переводит заказ в on_hold
    WHEN:
        - CAS перечитывает статус и выполняет on_hold -> paid
    THEN:
        - подписчики status_changed получают from_status=on_hold
        - OrderStatusEvent записан с тем же from_status
    """
    from apps.orders.domain import PaymentRef
    from apps.orders.models import Order, OrderStatusEvent
    from apps.orders.repository import DjangoOrderRepository

    order = pending_order()
    original = DjangoOrderRepository._current_status
    calls = []

    def stale_read(self, public_id):
        calls.append(public_id)
        if len(calls) == 1:
            Order.objects.filter(public_id=public_id).update(status=Order.STATUS_ON_HOLD)
            return Order.STATUS_PENDING_PAYMENT
        return original(self, public_id)

    monkeypatch.setattr("apps.orders.repository.DjangoOrderRepository._current_status", stale_read)

    seen = []
    container.events.subscribe_status_changed(lambda o, src, dst: seen.append((src, dst)))

    result = container.lifecycle.finalize(order.public_id, PaymentRef("bank_transfer", "REF-1"), source="staff")

    assert result.already_finalized is False
    assert seen == [(Order.STATUS_ON_HOLD, Order.STATUS_PAID)]
    event = OrderStatusEvent.objects.get(order__public_id=order.public_id, to_status=Order.STATUS_PAID)
    assert event.from_status == Order.STATUS_ON_HOLD
