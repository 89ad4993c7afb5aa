"""
Transaction database model.

Immutable ledger record of a value movement between two accounts.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, String, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import TransactionType, TransactionStatus
from backend.app.models.enums import SourceApp, value_enum


class Transaction(Base):
    """
    Transaction model.

    Inserted only by the ledger engine, inside the same unit that moves the
    balances. A completed transaction is never updated; pending provider
    top-ups move once to completed or failed.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Parties (payer == receiver for wallet top-ups)
    payer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True, index=True)

    amount = Column(Numeric(14, 2), nullable=False)
    type = Column(value_enum(TransactionType), nullable=False, index=True)
    status = Column(value_enum(TransactionStatus), nullable=False, index=True)
    source_app = Column(value_enum(SourceApp), nullable=False)
    description = Column(String(255), nullable=False)

    # Tagged union keyed by "kind", see schemas.ledger.TransactionMetadata
    metadata_payload = Column(JSON, nullable=False, default=dict)

    # Provider reference for asynchronous top-ups
    reference = Column(String(64), unique=True, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Transaction(id={self.id}, type='{self.type.value}', status='{self.status.value}', amount={self.amount})>"
