"""
Analytics Service.

Read-only aggregation over completed transactions for company dashboards
and transaction history listings.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_, desc, case

from backend.app.domain.ledger.ledger_service import to_money
from backend.app.models.billing_enums import TransactionStatus, TransactionType
from backend.app.models.product import Product
from backend.app.models.transaction import Transaction
from backend.app.schemas.documents import CompanyAnalytics


class AnalyticsService:

    @staticmethod
    async def company_analytics(
        db: AsyncSession,
        company_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> CompanyAnalytics:
        """Revenue split by source plus products at or below their low-stock threshold."""
        filters = [
            Transaction.company_id == company_id,
            Transaction.status == TransactionStatus.COMPLETED,
        ]
        if start:
            filters.append(Transaction.created_at >= start)
        if end:
            filters.append(Transaction.created_at <= end)

        stmt = select(
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.amount), 0),
            func.coalesce(func.sum(case(
                (Transaction.type == TransactionType.INVOICE_PAYMENT, Transaction.amount), else_=0
            )), 0),
            func.coalesce(func.sum(case(
                (Transaction.type == TransactionType.PRODUCT_PURCHASE, Transaction.amount), else_=0
            )), 0),
        ).where(*filters)
        count, total, invoice_total, product_total = (await db.execute(stmt)).one()

        total = to_money(total)
        average = to_money(total / count) if count else Decimal("0.00")

        low_stock = await db.execute(
            select(Product.id).where(
                Product.company_id == company_id,
                Product.is_active.is_(True),
                Product.quantity <= Product.low_stock_threshold,
            ).order_by(Product.id)
        )

        return CompanyAnalytics(
            company_id=company_id,
            total_revenue=total,
            total_transactions=count,
            invoice_revenue=to_money(invoice_total),
            product_revenue=to_money(product_total),
            average_transaction_value=average,
            period_start=start,
            period_end=end,
            low_stock_product_ids=list(low_stock.scalars().all()),
        )

    @staticmethod
    async def user_transactions(db: AsyncSession, user_id: int, limit: int = 50) -> List[Transaction]:
        """Transactions where the user paid or received, newest first."""
        result = await db.execute(
            select(Transaction)
            .where(or_(Transaction.payer_id == user_id, Transaction.receiver_id == user_id))
            .order_by(desc(Transaction.created_at), desc(Transaction.id))
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def company_transactions(db: AsyncSession, company_id: int, limit: int = 100) -> List[Transaction]:
        result = await db.execute(
            select(Transaction)
            .where(Transaction.company_id == company_id)
            .order_by(desc(Transaction.created_at), desc(Transaction.id))
            .limit(limit)
        )
        return list(result.scalars().all())
