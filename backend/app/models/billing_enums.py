"""
Ledger and settlement enumerations.

Values are part of the persisted compatibility surface; keep them lower-case.
"""

import enum


class TransactionType(str, enum.Enum):
    """Transaction type enumeration."""
    WALLET_TOPUP = "wallet_topup"  # Self-transfer, credit only
    INVOICE_PAYMENT = "invoice_payment"
    PRODUCT_PURCHASE = "product_purchase"
    TRANSFER = "transfer"


class TransactionStatus(str, enum.Enum):
    """Transaction status enumeration."""
    PENDING = "pending"  # Waiting for provider confirmation
    COMPLETED = "completed"  # Immutable from here on
    FAILED = "failed"
    CANCELLED = "cancelled"


class InvoiceStatus(str, enum.Enum):
    """Invoice status enumeration. Forward-only except cancellation."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class OrderStatus(str, enum.Enum):
    """Order status enumeration."""
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    """How a wallet top-up was funded."""
    WALLET = "wallet"
    MOMO = "momo"
    BANK_TRANSFER = "bank_transfer"
