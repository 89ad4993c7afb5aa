"""
Settlement Schemas.

OperationResult is the single result shape of every public settlement
operation: succeeded with a transaction id, failed retryable, or failed
terminally.
"""

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, EmailStr, Field

from backend.app.core.exceptions import AppException


class OperationResult(BaseModel):
    success: bool
    transaction_id: Optional[int] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    retryable: bool = False
    warnings: List[str] = Field(default_factory=list)
    payment_link: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    status_code: int = Field(default=200, exclude=True)  # HTTP status at the API edge

    @classmethod
    def ok(cls, transaction_id: Optional[int], warnings: Optional[List[str]] = None) -> "OperationResult":
        return cls(success=True, transaction_id=transaction_id, warnings=warnings or [])

    @classmethod
    def from_exception(cls, exc: AppException) -> "OperationResult":
        return cls(
            success=False,
            error_code=exc.error_code,
            message=exc.message,
            retryable=exc.retryable,
            payment_link=exc.details.get("payment_link"),
            details=exc.details,
            status_code=exc.status_code,
        )


class SettleOrderRequest(BaseModel):
    order_id: int


class SettleInvoiceRequest(BaseModel):
    invoice_id: int


class PaymentRequest(BaseModel):
    """Cross-app payment request addressed by payer email."""
    payer_email: EmailStr


class PaymentLinkCreate(BaseModel):
    domain_id: int
    domain_type: Literal["invoice", "order"]


class PaymentLinkResponse(BaseModel):
    url: str
    token: str
    domain_type: str
    domain_id: int


class PaymentLinkRedeem(BaseModel):
    token: str
