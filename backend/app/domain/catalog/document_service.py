"""
Document Service.

Creates the companies, products, invoices and orders that settlements
operate on. Totals are computed here, never taken from the caller.
Methods flush; the endpoint commits.
"""

import logging
import time
from collections import OrderedDict
from datetime import timedelta
from decimal import Decimal
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import as_naive_utc, utc_now
from backend.app.core.exceptions import RequestValidationFailedError, ResourceNotFoundError
from backend.app.domain.ledger.ledger_service import to_money
from backend.app.domain.validation.gate import Operation, authorize, ensure, validate_stock_availability
from backend.app.models.billing_enums import InvoiceStatus, OrderStatus
from backend.app.models.company import Company
from backend.app.models.invoice import Invoice
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.user import User
from backend.app.schemas.documents import (
    CompanyCreate,
    InvoiceCreate,
    InvoiceItem,
    OrderCreate,
    ProductCreate,
)

logger = logging.getLogger(__name__)

INVOICE_FROM_ORDER_DUE_DAYS = 30


def generate_invoice_number() -> str:
    return f"INV-{int(time.time() * 1000)}"


def price_invoice_items(items: List[InvoiceItem]):
    """Return (json_items, subtotal) with each line total = quantity * rate."""
    priced = []
    subtotal = Decimal("0")
    for item in items:
        line_total = to_money(item.quantity * item.rate)
        subtotal += line_total
        priced.append(item.model_copy(update={"total": line_total}).model_dump(mode="json"))
    return priced, to_money(subtotal)


class DocumentService:

    @staticmethod
    async def get_company(db: AsyncSession, company_id: int) -> Company:
        company = await db.get(Company, company_id)
        if company is None:
            raise ResourceNotFoundError("Company", company_id)
        return company

    @staticmethod
    async def create_company(db: AsyncSession, principal: User, data: CompanyCreate) -> Company:
        ensure(authorize(Operation.CREATE_COMPANY, principal))
        company = Company(name=data.name, owner_id=principal.id, settings=data.settings or {})
        db.add(company)
        await db.flush()
        logger.info("Company created", extra={"company_id": company.id, "owner_id": principal.id})
        return company

    @staticmethod
    async def create_product(db: AsyncSession, principal: User, company_id: int, data: ProductCreate) -> Product:
        company = await DocumentService.get_company(db, company_id)
        ensure(authorize(Operation.MANAGE_INVENTORY, principal, company))

        existing = await db.execute(
            select(Product.id).where(Product.company_id == company_id, Product.sku == data.sku)
        )
        if existing.scalar_one_or_none() is not None:
            raise RequestValidationFailedError("SKU already exists for this company", details={"sku": data.sku})

        product = Product(
            company_id=company_id,
            name=data.name,
            sku=data.sku,
            category=data.category,
            description=data.description,
            price=to_money(data.price),
            quantity=data.quantity,
            low_stock_threshold=data.low_stock_threshold,
            is_active=True,
        )
        db.add(product)
        await db.flush()
        return product

    @staticmethod
    async def create_invoice(db: AsyncSession, principal: User, company_id: int, data: InvoiceCreate) -> Invoice:
        """
        Issue an invoice to an email address.

        The addressee does not need an account; if one exists it is
        linked as client_id.
        """
        company = await DocumentService.get_company(db, company_id)
        ensure(authorize(Operation.ISSUE_INVOICE, principal, company))

        due_date = as_naive_utc(data.due_date)
        if due_date <= utc_now():
            raise RequestValidationFailedError("Due date must be in the future")

        items, subtotal = price_invoice_items(data.items)
        tax = to_money(data.tax)

        result = await db.execute(select(User.id).where(func.lower(User.email) == data.client_email.lower()))
        client_id = result.scalar_one_or_none()

        invoice = Invoice(
            company_id=company_id,
            client_id=client_id,
            client_email=data.client_email.lower(),
            invoice_number=data.invoice_number or generate_invoice_number(),
            items=items,
            subtotal=subtotal,
            tax=tax,
            total=subtotal + tax,
            status=InvoiceStatus(data.status),
            due_date=due_date,
        )
        db.add(invoice)
        await db.flush()
        logger.info("Invoice issued", extra={"invoice_id": invoice.id, "company_id": company_id})
        return invoice

    @staticmethod
    async def create_order(db: AsyncSession, principal: User, data: OrderCreate) -> Order:
        """
        Place a pending order priced from the current catalog.

        Stock is checked here as a fast failure but only taken at settlement.
        """
        ensure(authorize(Operation.PLACE_ORDER, principal))
        await DocumentService.get_company(db, data.company_id)

        product_ids = list(OrderedDict.fromkeys(item.product_id for item in data.items))
        result = await db.execute(
            select(Product).where(Product.id.in_(product_ids), Product.company_id == data.company_id)
        )
        products = {product.id: product for product in result.scalars().all()}

        raw_items = [{"product_id": item.product_id, "quantity": item.quantity} for item in data.items]
        ensure(validate_stock_availability(products, raw_items))

        items = []
        subtotal = Decimal("0")
        for item in data.items:
            product = products[item.product_id]
            line_total = to_money(product.price * item.quantity)
            subtotal += line_total
            items.append(
                item.model_copy(
                    update={"product_name": product.name, "price": product.price, "total": line_total}
                ).model_dump(mode="json")
            )

        tax = to_money(data.tax)
        order = Order(
            company_id=data.company_id,
            customer_id=principal.id,
            customer_email=principal.email,
            items=items,
            subtotal=to_money(subtotal),
            tax=tax,
            total=to_money(subtotal) + tax,
            status=OrderStatus.PENDING,
        )
        db.add(order)
        await db.flush()
        return order

    @staticmethod
    async def create_invoice_from_order(db: AsyncSession, principal: User, order_id: int, company_id: int) -> Invoice:
        """Bill an order: same lines and totals, sent, due in 30 days."""
        company = await DocumentService.get_company(db, company_id)
        ensure(authorize(Operation.ISSUE_INVOICE, principal, company))

        order = await db.get(Order, order_id)
        if order is None or order.company_id != company_id:
            raise ResourceNotFoundError("Order", order_id)

        items = [
            {
                "description": item.get("product_name") or f"Product {item['product_id']}",
                "quantity": str(item["quantity"]),
                "rate": item.get("price"),
                "total": item.get("total"),
            }
            for item in order.items
        ]
        invoice = Invoice(
            company_id=company_id,
            client_id=order.customer_id,
            client_email=order.customer_email,
            invoice_number=generate_invoice_number(),
            items=items,
            subtotal=order.subtotal,
            tax=order.tax,
            total=order.total,
            status=InvoiceStatus.SENT,
            due_date=utc_now() + timedelta(days=INVOICE_FROM_ORDER_DUE_DAYS),
        )
        db.add(invoice)
        await db.flush()
        return invoice
