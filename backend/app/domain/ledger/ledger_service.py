"""
Ledger Engine (Domain Logic).

The only writer of wallet balances and transaction records. Every method
works inside the caller's AsyncSession: the caller owns the atomic unit
(see db.transaction.run_atomic) so a transfer can be combined with other
row changes that must commit together.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backend.app.core.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    InsufficientFundsError,
    RequestValidationFailedError,
    ResourceNotFoundError,
)
from backend.app.domain.validation.gate import ensure, validate_amount
from backend.app.models.billing_enums import PaymentMethod, TransactionStatus, TransactionType
from backend.app.models.enums import SourceApp
from backend.app.models.outbox import OutboxEventType
from backend.app.models.transaction import Transaction
from backend.app.models.user import User
from backend.app.schemas.ledger import TopUpMetadata, TransactionMetadata, dump_metadata
from backend.app.services.outbox import append_event, transaction_payload

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class LedgerService:

    @staticmethod
    async def _load_account(db: AsyncSession, account_id: int) -> User:
        account = await db.get(User, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        if not account.is_active:
            raise AccountInactiveError(account_id)
        return account

    @staticmethod
    async def transfer(
        db: AsyncSession,
        payer_id: int,
        receiver_id: int,
        amount: Decimal,
        type: TransactionType,
        source_app: SourceApp,
        description: str,
        metadata: TransactionMetadata,
        company_id: Optional[int] = None,
        reference: Optional[str] = None,
    ) -> Transaction:
        """
        Move ``amount`` from payer to receiver and record a completed transaction.

        Flow:
        1. Validate amount and metadata shape
        2. Load both accounts (must exist, be active and differ unless topping up)
        3. Debit payer unless this is a wallet top-up
        4. Credit receiver
        5. Insert the completed Transaction and its outbox event

        The balance UPDATEs carry the version each account was read at; a
        concurrent writer makes the flush raise StaleDataError, which the
        surrounding run_atomic retries.

        Args:
            db: Session of the surrounding atomic unit
            payer_id: Debited account (same as receiver_id for top-ups)
            receiver_id: Credited account
            amount: Positive amount in currency units
            type: Transaction type; must match ``metadata.kind``
            source_app: App the payment originated from
            description: Human readable description
            metadata: Typed metadata for ``type``
            company_id: Company the payment belongs to, if any
            reference: External reference (unique), if any

        Returns:
            The flushed Transaction (id assigned)
        """
        ensure(validate_amount(amount))
        amount = to_money(amount)

        if metadata.kind != type.value:
            raise RequestValidationFailedError(
                "Transaction metadata does not match transaction type",
                details={"type": type.value, "metadata_kind": metadata.kind},
            )

        is_topup = type == TransactionType.WALLET_TOPUP
        if is_topup and payer_id != receiver_id:
            raise RequestValidationFailedError("Wallet top-up must credit the payer's own account")
        if not is_topup and payer_id == receiver_id:
            raise RequestValidationFailedError(
                "Cannot transfer to your own account", details={"type": type.value, "account_id": payer_id}
            )

        payer = await LedgerService._load_account(db, payer_id)
        receiver = payer if payer_id == receiver_id else await LedgerService._load_account(db, receiver_id)

        if not is_topup:
            if payer.wallet_balance < amount:
                raise InsufficientFundsError(
                    payer_id,
                    details={"available": str(payer.wallet_balance), "required": str(amount)},
                )
            payer.wallet_balance = payer.wallet_balance - amount

        receiver.wallet_balance = receiver.wallet_balance + amount

        txn = Transaction(
            payer_id=payer_id,
            receiver_id=receiver_id,
            company_id=company_id,
            amount=amount,
            type=type,
            status=TransactionStatus.COMPLETED,
            source_app=source_app,
            description=description,
            metadata_payload=dump_metadata(metadata),
            reference=reference,
        )
        db.add(txn)
        await db.flush()

        append_event(
            db,
            OutboxEventType.TRANSACTION_CREATED,
            "transaction",
            txn.id,
            transaction_payload(txn),
        )

        logger.info(
            "Ledger transfer recorded",
            extra={
                "transaction_id": txn.id,
                "type": type.value,
                "payer_id": payer_id,
                "receiver_id": receiver_id,
                "amount": str(amount),
            },
        )
        return txn

    @staticmethod
    async def open_pending_topup(
        db: AsyncSession,
        user_id: int,
        amount: Decimal,
        method: PaymentMethod,
        reference: str,
        phone_number: Optional[str] = None,
    ) -> Transaction:
        """Record a provider top-up awaiting confirmation. Balances are untouched."""
        ensure(validate_amount(amount))
        await LedgerService._load_account(db, user_id)

        metadata = TopUpMetadata(payment_method=method, reference=reference, phone_number=phone_number)
        txn = Transaction(
            payer_id=user_id,
            receiver_id=user_id,
            amount=to_money(amount),
            type=TransactionType.WALLET_TOPUP,
            status=TransactionStatus.PENDING,
            source_app=SourceApp.PAYFLOW,
            description=f"Wallet top-up via {method.value}",
            metadata_payload=dump_metadata(metadata),
            reference=reference,
        )
        db.add(txn)
        await db.flush()
        return txn

    @staticmethod
    async def resolve_pending(
        db: AsyncSession,
        reference: str,
        successful: bool,
        amount: Decimal,
    ) -> Transaction:
        """
        Settle a pending provider top-up by its reference.

        A successful confirmation credits the account and completes the
        transaction; a decline marks it failed. Already resolved
        transactions are returned unchanged.
        """
        result = await db.execute(select(Transaction).where(Transaction.reference == reference))
        txn = result.scalar_one_or_none()
        if txn is None:
            raise ResourceNotFoundError("Transaction", reference)

        if txn.status != TransactionStatus.PENDING:
            logger.info("Pending top-up already resolved", extra={"reference": reference, "status": txn.status.value})
            return txn

        if successful and to_money(amount) != txn.amount:
            raise RequestValidationFailedError(
                "Confirmed amount does not match the pending top-up",
                details={"expected": str(txn.amount), "received": str(amount)},
            )

        new_status = TransactionStatus.COMPLETED if successful else TransactionStatus.FAILED

        # Conditional status flip: a concurrent resolver makes this match no row
        flipped = await db.execute(
            update(Transaction)
            .where(Transaction.id == txn.id, Transaction.status == TransactionStatus.PENDING)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            raise StaleDataError(f"Transaction {txn.id} was resolved concurrently")

        if successful:
            # The provider already collected the funds, so a deactivated account is still credited
            account = await db.get(User, txn.receiver_id)
            if account is None:
                raise AccountNotFoundError(txn.receiver_id)
            if not account.is_active:
                logger.warning(
                    "Crediting confirmed top-up to inactive account",
                    extra={"reference": reference, "account_id": account.id},
                )
            account.wallet_balance = account.wallet_balance + txn.amount

        await db.flush()
        await db.refresh(txn)

        event_type = OutboxEventType.TRANSACTION_CREATED if successful else OutboxEventType.TRANSACTION_FAILED
        append_event(db, event_type, "transaction", txn.id, transaction_payload(txn))

        logger.info(
            "Pending top-up resolved",
            extra={"reference": reference, "transaction_id": txn.id, "status": new_status.value},
        )
        return txn

    @staticmethod
    async def get_balance(db: AsyncSession, user_id: int) -> User:
        account = await db.get(User, user_id)
        if account is None:
            raise AccountNotFoundError(user_id)
        return account
