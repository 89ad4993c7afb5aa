"""
Cross-App Notifier Tests.

Outbox draining, event-to-notification mapping, dead lettering and
notification read state.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.app.core.config import settings
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.settlement.settlement_service import SettlementService
from backend.app.models.billing_enums import PaymentMethod
from backend.app.models.dlq import DeadLetterQueue, DLQStatus
from backend.app.models.notification import Notification, NotificationType
from backend.app.models.outbox import OutboxEvent, OutboxStatus
from backend.app.services.notification_service import NotificationService
from backend.app.services.notifier import CrossAppNotifier


async def _notifications(session_factory, user_id):
    async with session_factory() as db:
        result = await db.execute(
            select(Notification).where(Notification.user_id == user_id).order_by(Notification.id)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_invoice_settlement_notifies_owner(session_factory, make_user, make_company, make_invoice):
    owner = await make_user()
    payer = await make_user(email="payer@example.com", balance="500.00")
    invoice = await make_invoice(await make_company(owner))
    settled = await SettlementService.settle_invoice(session_factory, invoice.id, payer.id)

    report = await CrossAppNotifier.drain(session_factory)

    assert (report.processed, report.failed, report.dead_lettered) == (2, 0, 0)
    received, paid = await _notifications(session_factory, owner.id)

    assert received.type == NotificationType.INVOICE
    assert received.title == "Invoice Payment Received"
    assert received.message == "Invoice payment of 115.00 SZL received"
    assert received.data == {"transaction_id": settled.transaction_id, "invoice_id": invoice.id}

    assert paid.type == NotificationType.PAYMENT
    assert paid.title == "Invoice Paid"
    assert paid.message == "Invoice INV-1001 has been paid by payer@example.com"
    assert await _notifications(session_factory, payer.id) == []


@pytest.mark.asyncio
async def test_order_settlement_notifies_owner(
    session_factory, make_user, make_company, make_product, make_order
):
    owner = await make_user()
    customer = await make_user(balance="100.00")
    company = await make_company(owner)
    order = await make_order(company, customer, [(await make_product(company), 2)])
    await SettlementService.settle_order(session_factory, order.id, customer.id)

    await CrossAppNotifier.drain(session_factory)

    titles = [(n.type, n.title) for n in await _notifications(session_factory, owner.id)]
    assert titles == [
        (NotificationType.ORDER, "Order Payment Received"),
        (NotificationType.PAYMENT, "Order Paid"),
    ]


@pytest.mark.asyncio
async def test_top_up_and_transfer_notifications(session_factory, make_user):
    payer = await make_user(balance="0.00")
    friend = await make_user(email="friend@example.com")
    await SettlementService.top_up_wallet(session_factory, payer.id, Decimal("40.00"), PaymentMethod.WALLET)
    await SettlementService.peer_transfer(session_factory, payer.id, friend.email, Decimal("15.00"), "Thanks")

    await CrossAppNotifier.drain(session_factory)

    [topped_up] = await _notifications(session_factory, payer.id)
    assert topped_up.title == "Payment Successful"
    assert topped_up.message == "Your payment of 40.00 SZL was successful"

    [received] = await _notifications(session_factory, friend.id)
    assert received.title == "Payment Received"
    assert received.message == "You received a payment of 15.00 SZL"


@pytest.mark.asyncio
async def test_drain_is_no_op_when_empty(session_factory):
    report = await CrossAppNotifier.drain(session_factory)
    assert (report.processed, report.failed, report.dead_lettered) == (0, 0, 0)


@pytest.mark.asyncio
async def test_delivery_failure_is_dead_lettered(session_factory, make_user, monkeypatch, mocker):
    monkeypatch.setattr(settings, "outbox_max_attempts", 2)
    user = await make_user()
    result = await SettlementService.top_up_wallet(session_factory, user.id, Decimal("5.00"), PaymentMethod.WALLET)
    assert result.success

    mocker.patch(
        "backend.app.services.notifier.render_notification",
        side_effect=RuntimeError("template store down"),
    )
    first = await CrossAppNotifier.drain(session_factory)
    second = await CrossAppNotifier.drain(session_factory)
    third = await CrossAppNotifier.drain(session_factory)

    assert (first.failed, first.dead_lettered) == (1, 0)
    assert (second.failed, second.dead_lettered) == (1, 1)
    assert (third.processed, third.failed) == (0, 0)

    async with session_factory() as db:
        event = (await db.execute(select(OutboxEvent))).scalars().one()
        dlq = (await db.execute(select(DeadLetterQueue))).scalars().one()
    assert event.status == OutboxStatus.FAILED
    assert event.attempts == 2
    assert "template store down" in event.last_error
    assert dlq.source_event_id == event.id
    assert dlq.task_name == "transaction.created"
    assert dlq.status == DLQStatus.FAILED
    assert await _notifications(session_factory, user.id) == []


@pytest.mark.asyncio
async def test_requeued_event_is_delivered(session_factory, make_user, monkeypatch, mocker):
    monkeypatch.setattr(settings, "outbox_max_attempts", 1)
    user = await make_user()
    await SettlementService.top_up_wallet(session_factory, user.id, Decimal("5.00"), PaymentMethod.WALLET)

    broken = mocker.patch(
        "backend.app.services.notifier.render_notification",
        side_effect=RuntimeError("down"),
    )
    await CrossAppNotifier.drain(session_factory)
    mocker.stop(broken)

    async with session_factory() as db:
        dlq = (await db.execute(select(DeadLetterQueue))).scalars().one()

    item = await CrossAppNotifier.requeue_dead_letter(session_factory, dlq.id)
    assert item.status == DLQStatus.RETRYING
    assert item.retry_count == 1

    report = await CrossAppNotifier.drain(session_factory)
    assert report.processed == 1
    [notification] = await _notifications(session_factory, user.id)
    assert notification.title == "Payment Successful"


@pytest.mark.asyncio
async def test_requeue_unknown_item(session_factory):
    with pytest.raises(ResourceNotFoundError):
        await CrossAppNotifier.requeue_dead_letter(session_factory, 12345)


@pytest.mark.asyncio
async def test_drain_quietly_swallows_errors(session_factory, mocker):
    mocker.patch.object(CrossAppNotifier, "drain", side_effect=RuntimeError("db gone"))
    await CrossAppNotifier.drain_quietly(session_factory)


class TestReadState:

    @pytest.mark.asyncio
    async def test_mark_read_is_scoped_to_owner(self, db_session, make_user):
        alice = await make_user()
        bob = await make_user()
        note = await NotificationService.create_notification(db_session, user_id=alice.id, title="Hi", message="There")
        await db_session.commit()

        assert await NotificationService.mark_read(db_session, note.id, bob.id) is False
        assert await NotificationService.mark_read(db_session, note.id, alice.id) is True
        await db_session.commit()

        [stored] = await NotificationService.list_for_user(db_session, alice.id)
        await db_session.refresh(stored)
        assert stored.read is True
        assert stored.read_at is not None

    @pytest.mark.asyncio
    async def test_mark_all_read(self, db_session, make_user):
        user = await make_user()
        other = await make_user()
        for i in range(3):
            await NotificationService.create_notification(db_session, user_id=user.id, title=f"N{i}", message="m")
        await NotificationService.create_notification(db_session, user_id=other.id, title="X", message="m")
        await db_session.commit()

        assert await NotificationService.mark_all_read(db_session, user.id) == 3
        await db_session.commit()

        assert await NotificationService.list_for_user(db_session, user.id, unread_only=True) == []
        assert len(await NotificationService.list_for_user(db_session, other.id, unread_only=True)) == 1
