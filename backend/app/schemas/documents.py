"""
Company, Product, Invoice and Order Schemas.
"""

from decimal import Decimal
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from backend.app.models.billing_enums import InvoiceStatus, OrderStatus


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    settings: Optional[Dict[str, Any]] = None


class CompanyResponse(BaseModel):
    id: int
    name: str
    owner_id: int
    settings: Optional[Dict[str, Any]]
    created_at: datetime

    class Config:
        from_attributes = True


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sku: str = Field(..., min_length=1, max_length=64)
    category: Optional[str] = None
    description: Optional[str] = None
    price: Decimal = Field(..., gt=0, decimal_places=2)
    quantity: int = Field(..., ge=0)
    low_stock_threshold: int = Field(default=0, ge=0)


class ProductResponse(BaseModel):
    id: int
    company_id: int
    name: str
    sku: str
    price: Decimal
    quantity: int
    low_stock_threshold: int
    is_active: bool

    class Config:
        from_attributes = True


class InvoiceItem(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(..., gt=0)
    rate: Decimal = Field(..., gt=0)
    total: Optional[Decimal] = None  # Computed as quantity * rate


class InvoiceCreate(BaseModel):
    client_email: EmailStr
    invoice_number: Optional[str] = Field(default=None, max_length=64)
    items: List[InvoiceItem] = Field(..., min_length=1)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    due_date: datetime
    status: Literal["draft", "sent"] = "sent"


class InvoiceResponse(BaseModel):
    id: int
    company_id: int
    client_email: str
    invoice_number: str
    items: List[Dict[str, Any]]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    status: InvoiceStatus
    due_date: datetime
    paid_at: Optional[datetime]
    payment_transaction_id: Optional[int]

    class Config:
        from_attributes = True


class OrderItem(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)
    product_name: Optional[str] = None  # Filled from the product
    price: Optional[Decimal] = None
    total: Optional[Decimal] = None


class OrderCreate(BaseModel):
    company_id: int
    items: List[OrderItem] = Field(..., min_length=1)
    tax: Decimal = Field(default=Decimal("0"), ge=0)


class OrderResponse(BaseModel):
    id: int
    company_id: int
    customer_id: int
    customer_email: str
    items: List[Dict[str, Any]]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    status: OrderStatus
    paid_at: Optional[datetime]
    payment_transaction_id: Optional[int]

    class Config:
        from_attributes = True


class CompanyAnalytics(BaseModel):
    company_id: int
    total_revenue: Decimal
    total_transactions: int
    invoice_revenue: Decimal
    product_revenue: Decimal
    average_transaction_value: Decimal
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    low_stock_product_ids: List[int] = Field(default_factory=list)
