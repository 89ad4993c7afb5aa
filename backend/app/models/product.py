"""
Product database model.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, String, Boolean, Text, CheckConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base


class Product(Base):
    """
    Product model.

    quantity only goes down through a successful order settlement and never
    below zero; the CHECK constraint backs the application-level check.
    """
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(64), nullable=False, index=True)
    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(14, 2), nullable=False)

    quantity = Column(Integer, default=0, nullable=False)
    low_stock_threshold = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<Product(id={self.id}, sku='{self.sku}', quantity={self.quantity})>"
