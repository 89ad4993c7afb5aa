"""
Reconciliation pass.

The transaction record is the source of truth. This pass finds completed
invoice and order payments that no document points at and re-applies the
idempotent mark-paid patch.
"""

import logging
from typing import List

from pydantic import BaseModel, Field
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.exceptions import AppException
from backend.app.db.transaction import run_atomic
from backend.app.domain.settlement.settlement_service import apply_invoice_paid, apply_order_paid
from backend.app.models.billing_enums import InvoiceStatus, OrderStatus, TransactionStatus, TransactionType
from backend.app.models.invoice import Invoice
from backend.app.models.order import Order
from backend.app.models.transaction import Transaction
from backend.app.models.user import User
from backend.app.schemas.ledger import InvoicePaymentMetadata, ProductPurchaseMetadata, parse_metadata
from backend.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)


class ReconciliationReport(BaseModel):
    scanned: int = 0
    patched: List[int] = Field(default_factory=list)      # transaction ids whose document was fixed
    conflicting: List[int] = Field(default_factory=list)  # document already paid by another transaction
    missing: List[int] = Field(default_factory=list)      # document no longer exists


async def _orphaned_payments(db: AsyncSession, limit: int) -> List[Transaction]:
    invoice_link = exists().where(Invoice.payment_transaction_id == Transaction.id)
    order_link = exists().where(Order.payment_transaction_id == Transaction.id)
    stmt = (
        select(Transaction)
        .where(
            Transaction.status == TransactionStatus.COMPLETED,
            (
                (Transaction.type == TransactionType.INVOICE_PAYMENT) & ~invoice_link
            ) | (
                (Transaction.type == TransactionType.PRODUCT_PURCHASE) & ~order_link
            ),
        )
        .order_by(Transaction.id)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


class ReconciliationService:

    @staticmethod
    async def run(session_factory: async_sessionmaker, limit: int = 500) -> ReconciliationReport:
        report = ReconciliationReport()
        async with session_factory() as db:
            candidates = await _orphaned_payments(db, limit)
        report.scanned = len(candidates)

        for txn in candidates:
            metadata = parse_metadata(txn.metadata_payload)

            async def work(db: AsyncSession, txn=txn, metadata=metadata) -> str:
                payer = await db.get(User, txn.payer_id)
                payer_email = payer.email if payer else None
                if isinstance(metadata, InvoicePaymentMetadata):
                    invoice = await db.get(Invoice, metadata.invoice_id)
                    if invoice is None:
                        return "missing"
                    if invoice.status == InvoiceStatus.PAID:
                        return "conflicting"
                    await apply_invoice_paid(db, invoice, txn.id, payer_email)
                    return "patched"
                if isinstance(metadata, ProductPurchaseMetadata):
                    order = await db.get(Order, metadata.order_id)
                    if order is None:
                        return "missing"
                    if order.status in (OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
                        return "conflicting"
                    await apply_order_paid(db, order, txn.id)
                    return "patched"
                return "missing"

            try:
                outcome = await run_atomic(session_factory, work, label="reconcile")
            except AppException:
                logger.exception("Reconciliation unit failed", extra={"transaction_id": txn.id})
                continue

            getattr(report, outcome).append(txn.id)
            if outcome == "patched":
                logger.warning("Reconciled unpaid document", extra={"transaction_id": txn.id})
                try:
                    await log_event(
                        session_factory,
                        AuditAction.RECONCILIATION_PATCHED,
                        resource_type="transaction",
                        resource_id=txn.id,
                        transaction_id=txn.id,
                    )
                except Exception:
                    logger.exception("Audit write failed after reconciliation", extra={"transaction_id": txn.id})
            elif outcome == "conflicting":
                logger.error("Document already paid by another transaction", extra={"transaction_id": txn.id})

        return report
