"""
Order database model.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, String, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import OrderStatus
from backend.app.models.enums import value_enum


class Order(Base):
    """
    Order model.

    Identity-addressed: only customer_id may settle it. Settlement
    decrements the stock of every referenced product in the same unit.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    customer_email = Column(String(255), nullable=False)

    # [{product_id, product_name, quantity, price, total}]
    items = Column(JSON, nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False)
    tax = Column(Numeric(14, 2), nullable=False)
    total = Column(Numeric(14, 2), nullable=False)

    status = Column(value_enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)

    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<Order(id={self.id}, status='{self.status.value}', total={self.total})>"
