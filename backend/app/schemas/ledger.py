"""
Ledger Schemas.

Transaction metadata is a closed union keyed by ``kind``; each
transaction type carries exactly one metadata shape.
"""

from decimal import Decimal
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field, TypeAdapter

from backend.app.models.billing_enums import (
    PaymentMethod, TransactionStatus, TransactionType
)
from backend.app.models.enums import SourceApp


class InvoicePaymentMetadata(BaseModel):
    kind: Literal["invoice_payment"] = "invoice_payment"
    invoice_id: int
    invoice_number: Optional[str] = None


class ProductPurchaseMetadata(BaseModel):
    kind: Literal["product_purchase"] = "product_purchase"
    order_id: int
    product_ids: List[int] = Field(default_factory=list)


class TopUpMetadata(BaseModel):
    kind: Literal["wallet_topup"] = "wallet_topup"
    payment_method: PaymentMethod
    reference: Optional[str] = None
    phone_number: Optional[str] = None


class TransferMetadata(BaseModel):
    kind: Literal["transfer"] = "transfer"
    reference: Optional[str] = None
    receiver_email: Optional[str] = None


TransactionMetadata = Annotated[
    Union[InvoicePaymentMetadata, ProductPurchaseMetadata, TopUpMetadata, TransferMetadata],
    Field(discriminator="kind"),
]

_metadata_adapter = TypeAdapter(TransactionMetadata)


def parse_metadata(payload: Dict[str, Any]) -> TransactionMetadata:
    """Rebuild the typed metadata stored on a transaction row."""
    return _metadata_adapter.validate_python(payload)


def dump_metadata(metadata: TransactionMetadata) -> Dict[str, Any]:
    return metadata.model_dump(mode="json")


class TransferRequest(BaseModel):
    """Direct ledger transfer; the payer is the authenticated principal."""
    receiver_id: int
    amount: Decimal = Field(..., decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)
    reference: Optional[str] = Field(default=None, max_length=64)


class TopUpRequest(BaseModel):
    amount: Decimal = Field(..., decimal_places=2)
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    reference: Optional[str] = Field(default=None, max_length=64)


class MomoTopUpRequest(BaseModel):
    phone_number: str = Field(..., min_length=7, max_length=16)
    amount: Decimal = Field(..., decimal_places=2)


class PeerTransferRequest(BaseModel):
    receiver_email: EmailStr
    amount: Decimal = Field(..., decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)


class MomoWebhookPayload(BaseModel):
    """Provider callback confirming or declining a pending top-up."""
    reference: str
    status: Literal["SUCCESSFUL", "FAILED"]
    amount: Decimal
    transaction_id: Optional[str] = None  # provider-side id, informational


class TransactionResponse(BaseModel):
    id: int
    payer_id: int
    receiver_id: int
    company_id: Optional[int]
    amount: Decimal
    type: TransactionType
    status: TransactionStatus
    source_app: SourceApp
    description: str
    metadata_payload: Dict[str, Any]
    reference: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class WalletResponse(BaseModel):
    user_id: int
    wallet_balance: Decimal
    currency: str
    is_active: bool
