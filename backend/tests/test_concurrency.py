"""
Concurrency Tests.

Validates that races on the same account, invoice or product linearize
through the version counters and the atomic unit retry.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from backend.app.core.exceptions import ConcurrencyConflictError, InvalidAmountError
from backend.app.db.transaction import is_transient_conflict, run_atomic
from backend.app.domain.settlement.settlement_service import SettlementService
from backend.app.models.billing_enums import InvoiceStatus, OrderStatus, TransactionType
from backend.app.models.enums import SourceApp
from backend.app.models.invoice import Invoice
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.transaction import Transaction
from backend.app.models.user import User
from backend.app.schemas.ledger import TransferMetadata


@pytest.mark.asyncio
async def test_concurrent_invoice_settlement_pays_once(
    session_factory, make_user, make_company, make_invoice, reload
):
    """N payers race for one invoice: exactly one transaction is recorded."""
    owner = await make_user(balance="0.00")
    payers = [await make_user(balance="500.00") for _ in range(5)]
    invoice = await make_invoice(await make_company(owner), total="115.00")

    results = await asyncio.gather(*[
        SettlementService.settle_invoice(session_factory, invoice.id, payer.id) for payer in payers
    ])

    successes = [r for r in results if r.success]
    failures = [r for r in results if not r.success]
    assert len(successes) == 1
    assert {r.error_code for r in failures} == {"ERR_SETTLE_001"}

    async with session_factory() as db:
        txn_count = (await db.execute(
            select(func.count(Transaction.id)).where(Transaction.type == TransactionType.INVOICE_PAYMENT)
        )).scalar_one()
    assert txn_count == 1

    paid = await reload(Invoice, invoice.id)
    assert paid.status == InvoiceStatus.PAID
    assert paid.payment_transaction_id == successes[0].transaction_id
    assert (await reload(User, owner.id)).wallet_balance == Decimal("115.00")


@pytest.mark.asyncio
async def test_same_payer_settling_twice_concurrently(
    session_factory, make_user, make_company, make_invoice, reload
):
    owner = await make_user(balance="0.00")
    payer = await make_user(balance="1000.00")
    invoice = await make_invoice(await make_company(owner), total="115.00")

    results = await asyncio.gather(
        SettlementService.settle_invoice(session_factory, invoice.id, payer.id),
        SettlementService.settle_invoice(session_factory, invoice.id, payer.id),
    )

    assert sorted(r.success for r in results) == [False, True]
    assert (await reload(User, payer.id)).wallet_balance == Decimal("885.00")


@pytest.mark.asyncio
async def test_last_unit_of_stock(session_factory, make_user, make_company, make_product, make_order, reload):
    """Two customers race for a product with quantity 1."""
    owner = await make_user()
    first = await make_user(balance="100.00")
    second = await make_user(balance="100.00")
    company = await make_company(owner)
    product = await make_product(company, price="25.00", quantity=1)
    order_a = await make_order(company, first, [(product, 1)])
    order_b = await make_order(company, second, [(product, 1)])

    results = await asyncio.gather(
        SettlementService.settle_order(session_factory, order_a.id, first.id),
        SettlementService.settle_order(session_factory, order_b.id, second.id),
    )

    successes = [r for r in results if r.success]
    failures = [r for r in results if not r.success]
    assert len(successes) == 1
    assert failures[0].error_code in ("ERR_SETTLE_004", "ERR_SETTLE_001")
    assert (await reload(Product, product.id)).quantity == 0

    statuses = sorted([(await reload(Order, order_a.id)).status.value, (await reload(Order, order_b.id)).status.value])
    assert statuses == [OrderStatus.PAID.value, OrderStatus.PENDING.value]
    total = (await reload(User, first.id)).wallet_balance + (await reload(User, second.id)).wallet_balance
    assert total == Decimal("175.00")


@pytest.mark.asyncio
async def test_same_order_settled_twice_concurrently(
    session_factory, make_user, make_company, make_product, make_order, reload
):
    owner = await make_user()
    customer = await make_user(balance="100.00")
    company = await make_company(owner)
    product = await make_product(company, price="25.00", quantity=1)
    order = await make_order(company, customer, [(product, 1)])

    results = await asyncio.gather(
        SettlementService.settle_order(session_factory, order.id, customer.id),
        SettlementService.settle_order(session_factory, order.id, customer.id),
    )

    assert sorted(r.success for r in results) == [False, True]
    assert (await reload(Product, product.id)).quantity == 0
    assert (await reload(User, customer.id)).wallet_balance == Decimal("75.00")


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(session_factory, make_user, reload):
    payer = await make_user(balance="100.00")
    receivers = [await make_user(balance="0.00") for _ in range(5)]

    results = await asyncio.gather(*[
        SettlementService.transfer(
            session_factory,
            payer.id,
            receiver.id,
            Decimal("30.00"),
            TransactionType.TRANSFER,
            SourceApp.PAYFLOW,
            "split",
            TransferMetadata(),
        )
        for receiver in receivers
    ])

    successes = [r for r in results if r.success]
    assert len(successes) == 3
    assert {r.error_code for r in results if not r.success} == {"ERR_LEDGER_002"}

    assert (await reload(User, payer.id)).wallet_balance == Decimal("10.00")
    received = sum([(await reload(User, r.id)).wallet_balance for r in receivers], Decimal("0"))
    assert received == Decimal("90.00")


class TestRunAtomic:

    @pytest.mark.asyncio
    async def test_retries_stale_units(self, session_factory):
        attempts = []

        async def work(db):
            attempts.append(1)
            if len(attempts) < 3:
                raise StaleDataError("row changed")
            return "done"

        assert await run_atomic(session_factory, work, base_delay=0) == "done"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_exhaustion_is_retryable_conflict(self, session_factory):
        async def work(db):
            raise StaleDataError("always")

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await run_atomic(session_factory, work, max_attempts=3, base_delay=0)

        assert exc_info.value.retryable is True
        assert exc_info.value.details == {"attempts": 3}

    @pytest.mark.asyncio
    async def test_domain_errors_are_not_retried(self, session_factory):
        attempts = []

        async def work(db):
            attempts.append(1)
            raise InvalidAmountError()

        with pytest.raises(InvalidAmountError):
            await run_atomic(session_factory, work, base_delay=0)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_failed_unit_rolls_back(self, session_factory, make_user, reload):
        user = await make_user(balance="10.00")

        async def work(db):
            account = await db.get(User, user.id)
            account.wallet_balance = Decimal("999.00")
            await db.flush()
            raise InvalidAmountError()

        with pytest.raises(InvalidAmountError):
            await run_atomic(session_factory, work)
        assert (await reload(User, user.id)).wallet_balance == Decimal("10.00")


def test_transient_conflict_classification():
    assert is_transient_conflict(StaleDataError("x"))
    assert is_transient_conflict(OperationalError("UPDATE", {}, Exception("database is locked")))
    assert not is_transient_conflict(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))
    assert not is_transient_conflict(ValueError("nope"))
