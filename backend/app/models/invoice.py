"""
Invoice database model.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, String, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import InvoiceStatus
from backend.app.models.enums import value_enum


class Invoice(Base):
    """
    Invoice model.

    Addressed to an email, not an identity: any account may settle it.
    status, paid_at and payment_transaction_id are written only by the
    settlement coordinator; payment_transaction_id is set iff status is PAID.
    """
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    client_email = Column(String(255), nullable=False, index=True)
    invoice_number = Column(String(64), nullable=False, index=True)

    # [{description, quantity, rate, total}]
    items = Column(JSON, nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False)
    tax = Column(Numeric(14, 2), nullable=False)
    total = Column(Numeric(14, 2), nullable=False)

    status = Column(value_enum(InvoiceStatus), default=InvoiceStatus.DRAFT, nullable=False, index=True)
    due_date = Column(DateTime(timezone=True), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)

    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<Invoice(id={self.id}, number='{self.invoice_number}', status='{self.status.value}', total={self.total})>"
