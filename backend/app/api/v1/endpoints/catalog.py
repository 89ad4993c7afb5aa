"""
Company Catalog API Endpoints.

Companies, products, invoices and orders: the documents settlements act on.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_current_account
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.db.session import get_db
from backend.app.domain.catalog.document_service import DocumentService
from backend.app.domain.validation.gate import Operation, authorize, ensure
from backend.app.models.invoice import Invoice
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.user import User
from backend.app.schemas.documents import (
    CompanyAnalytics,
    CompanyCreate,
    CompanyResponse,
    InvoiceCreate,
    InvoiceResponse,
    OrderCreate,
    OrderResponse,
    ProductCreate,
    ProductResponse,
)
from backend.app.schemas.ledger import TransactionResponse
from backend.app.services.analytics import AnalyticsService

router = APIRouter(prefix="/companies", tags=["Companies"])
orders_router = APIRouter(prefix="/orders", tags=["Orders"])


async def _owned_company(db: AsyncSession, account: User, company_id: int):
    company = await DocumentService.get_company(db, company_id)
    ensure(authorize(Operation.VIEW_COMPANY, account, company))
    return company


@router.post("", response_model=CompanyResponse, status_code=status.HTTP_201_CREATED)
async def create_company(
    data: CompanyCreate,
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db)
):
    company = await DocumentService.create_company(db, account, data)
    await db.commit()
    await db.refresh(company)
    return company


@router.get("/{company_id}", response_model=CompanyResponse)
async def get_company(
    company_id: int = Path(...),
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db)
):
    return await _owned_company(db, account, company_id)


@router.post("/{company_id}/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    data: ProductCreate,
    company_id: int = Path(...),
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db)
):
    product = await DocumentService.create_product(db, account, company_id, data)
    await db.commit()
    await db.refresh(product)
    return product


@router.get("/{company_id}/products", response_model=List[ProductResponse])
async def list_products(company_id: int = Path(...), db: AsyncSession = Depends(get_db),
                        account: User = Depends(get_current_account)):
    """Public catalog of active products."""
    result = await db.execute(
        select(Product)
        .where(Product.company_id == company_id, Product.is_active.is_(True))
        .order_by(Product.name)
    )
    return result.scalars().all()


@router.post("/{company_id}/invoices", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    data: InvoiceCreate,
    company_id: int = Path(...),
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db)
):
    invoice = await DocumentService.create_invoice(db, account, company_id, data)
    await db.commit()
    await db.refresh(invoice)
    return invoice


@router.get("/{company_id}/invoices", response_model=List[InvoiceResponse])
async def list_invoices(
    company_id: int = Path(...),
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db)
):
    await _owned_company(db, account, company_id)
    result = await db.execute(
        select(Invoice).where(Invoice.company_id == company_id).order_by(desc(Invoice.id))
    )
    return result.scalars().all()


@router.post(
    "/{company_id}/orders/{order_id}/invoice",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice_from_order(
    company_id: int = Path(...),
    order_id: int = Path(...),
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db)
):
    invoice = await DocumentService.create_invoice_from_order(db, account, order_id, company_id)
    await db.commit()
    await db.refresh(invoice)
    return invoice


@router.get("/{company_id}/transactions", response_model=List[TransactionResponse])
async def list_company_transactions(
    company_id: int = Path(...),
    limit: int = Query(100, ge=1, le=500),
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db)
):
    await _owned_company(db, account, company_id)
    return await AnalyticsService.company_transactions(db, company_id, limit)


@router.get("/{company_id}/analytics", response_model=CompanyAnalytics)
async def company_analytics(
    company_id: int = Path(...),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db)
):
    await _owned_company(db, account, company_id)
    return await AnalyticsService.company_analytics(db, company_id, start, end)


@orders_router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    data: OrderCreate,
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db)
):
    """Place a pending order as the calling customer."""
    order = await DocumentService.create_order(db, account, data)
    await db.commit()
    await db.refresh(order)
    return order


@orders_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int = Path(...),
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db)
):
    order = await db.get(Order, order_id)
    if order is None or order.customer_id != account.id:
        raise ResourceNotFoundError("Order", order_id)
    return order
