"""
User (Account) database model.

The wallet-bearing account of the ledger. Identity itself lives with the
external identity provider; this row carries the wallet balance and the
active flag the core trusts.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import UserRole, value_enum


def default_permissions() -> dict:
    return {"payflow": True, "invoiceflow": False, "stockflow": False}


class User(Base):
    """
    Account model.

    wallet_balance is written only by the ledger engine. version_id is the
    optimistic concurrency counter: every UPDATE is conditioned on the
    version that was read, so two concurrent transfers touching the same
    account cannot both commit.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    business_name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)

    role = Column(value_enum(UserRole), default=UserRole.GENERAL_USER, nullable=False)
    permissions = Column(JSON, default=default_permissions, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Smallest currency unit precision (cents)
    wallet_balance = Column(Numeric(14, 2), default=0, nullable=False)
    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def has_app_permission(self, app: str) -> bool:
        if self.role == UserRole.ADMIN:
            return True
        return bool((self.permissions or {}).get(app, False))

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', balance={self.wallet_balance})>"
