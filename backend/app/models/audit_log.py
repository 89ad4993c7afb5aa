"""
Audit Log Database Model.

Trail of money-moving and operator actions, written after the unit that
performed them has committed.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - INVOICE_SETTLED / ORDER_SETTLED
    - WALLET_TOPPED_UP / PEER_TRANSFER
    - TOPUP_CONFIRMED / TOPUP_DECLINED (provider webhook)
    - PAYMENT_LINK_ISSUED / PAYMENT_LINK_REDEEMED
    - RECONCILIATION_PATCHED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # What the action touched
    resource_type = Column(String(32), nullable=True)
    resource_id = Column(Integer, nullable=True, index=True)
    transaction_id = Column(Integer, nullable=True, index=True)

    meta_data = Column(JSON, nullable=True)
    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id}, resource={self.resource_type}:{self.resource_id})>"
