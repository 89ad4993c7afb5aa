"""
Access / Validation Gate.

Pure, side-effect-free checks evaluated before any mutation. Each check
returns a CheckResult; callers pass them to ``ensure`` which raises the
first failure's error.
"""

import enum
import re
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from backend.app.core.clock import as_naive_utc, utc_now
from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AlreadySettledError,
    AppException,
    DocumentCancelledError,
    InsufficientPermissionsError,
    InsufficientStockError,
    InvalidAmountError,
    InvoiceExpiredError,
    OwnershipMismatchError,
    RequestValidationFailedError,
)
from backend.app.models.billing_enums import InvoiceStatus, OrderStatus
from backend.app.models.enums import SourceApp, UserRole

# Eswatini MSISDN, with or without country code
ESWATINI_PHONE_PATTERN = re.compile(r"^(\+268|268|0)?[67]\d{7}$")

_ORDER_SETTLED_STATES = {OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED}

_CENT = Decimal("0.01")


class CheckResult(BaseModel):
    """Outcome of a single gate check."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    valid: bool
    reason: Optional[str] = None
    error: Optional[AppException] = Field(default=None, exclude=True)

    @classmethod
    def passed(cls) -> "CheckResult":
        return cls(valid=True)

    @classmethod
    def failed(cls, error: AppException) -> "CheckResult":
        return cls(valid=False, reason=error.message, error=error)


def ensure(*checks: CheckResult) -> None:
    """Short-circuit on the first failed check by raising its error."""
    for check in checks:
        if not check.valid:
            raise check.error


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------

class Operation(str, enum.Enum):
    LEDGER_TRANSFER = "ledger_transfer"
    TOP_UP = "top_up"
    PEER_TRANSFER = "peer_transfer"
    SETTLE_INVOICE = "settle_invoice"
    SETTLE_ORDER = "settle_order"
    PLACE_ORDER = "place_order"
    ISSUE_INVOICE = "issue_invoice"
    MANAGE_INVENTORY = "manage_inventory"
    CREATE_PAYMENT_LINK = "create_payment_link"
    VIEW_COMPANY = "view_company"
    CREATE_COMPANY = "create_company"
    RUN_OPS = "run_ops"
    MANAGE_PERMISSIONS = "manage_permissions"


# App whose permission flag the principal needs
_OPERATION_APP = {
    Operation.LEDGER_TRANSFER: SourceApp.PAYFLOW,
    Operation.TOP_UP: SourceApp.PAYFLOW,
    Operation.PEER_TRANSFER: SourceApp.PAYFLOW,
    Operation.SETTLE_INVOICE: SourceApp.PAYFLOW,
    Operation.SETTLE_ORDER: SourceApp.PAYFLOW,
    Operation.PLACE_ORDER: SourceApp.PAYFLOW,
    Operation.ISSUE_INVOICE: SourceApp.INVOICEFLOW,
    Operation.MANAGE_INVENTORY: SourceApp.STOCKFLOW,
}

# Platform operations, allowed to admins only
_ADMIN_OPERATIONS = {Operation.RUN_OPS, Operation.MANAGE_PERMISSIONS}

# Operations on a company's resources, allowed to its owner only
_COMPANY_OWNER_OPERATIONS = {
    Operation.ISSUE_INVOICE,
    Operation.MANAGE_INVENTORY,
    Operation.CREATE_PAYMENT_LINK,
    Operation.VIEW_COMPANY,
}


def authorize(operation: Operation, principal: Any, resource: Any = None) -> CheckResult:
    """
    Single capability check for every operation.

    Args:
        operation: What the principal is trying to do
        principal: The acting account (User row) or None if unknown
        resource: Company for company-scoped operations, Order for SETTLE_ORDER
    """
    if principal is None:
        return CheckResult.failed(AccountNotFoundError())

    if not principal.is_active:
        return CheckResult.failed(AccountInactiveError(principal.id))

    if operation in _ADMIN_OPERATIONS:
        if principal.role != UserRole.ADMIN:
            return CheckResult.failed(InsufficientPermissionsError("Admin access required"))
        return CheckResult.passed()

    app = _OPERATION_APP.get(operation)
    if app is not None and not principal.has_app_permission(app.value):
        return CheckResult.failed(
            InsufficientPermissionsError(f"No {app.value} access", details={"app": app.value})
        )

    if operation in _COMPANY_OWNER_OPERATIONS and resource is not None:
        if resource.owner_id != principal.id:
            return CheckResult.failed(
                InsufficientPermissionsError("Company access denied", details={"company_id": resource.id})
            )

    if operation == Operation.SETTLE_ORDER and resource is not None:
        return validate_order_ownership(resource, principal.id)

    return CheckResult.passed()


# ---------------------------------------------------------------------------
# Business rules
# ---------------------------------------------------------------------------

def validate_amount(amount: Decimal, maximum: Optional[Decimal] = None) -> CheckResult:
    ceiling = maximum if maximum is not None else settings.max_transaction_amount
    if amount is None or amount <= 0:
        return CheckResult.failed(InvalidAmountError("Amount must be greater than 0"))
    # Sub-cent amounts would round to a different (possibly zero) ledger amount
    if Decimal(str(amount)) != Decimal(str(amount)).quantize(_CENT):
        return CheckResult.failed(
            InvalidAmountError("Amount cannot have more than 2 decimal places", details={"amount": str(amount)})
        )
    if amount > ceiling:
        return CheckResult.failed(
            InvalidAmountError(
                f"Amount exceeds maximum limit of {ceiling} {settings.currency}",
                details={"maximum": str(ceiling)},
            )
        )
    return CheckResult.passed()


def validate_invoice_payment(invoice, now: Optional[datetime] = None) -> CheckResult:
    """Invoices are email-addressed: any payer may settle them."""
    if invoice.status == InvoiceStatus.PAID:
        return CheckResult.failed(AlreadySettledError("Invoice", invoice.id))
    if invoice.status == InvoiceStatus.CANCELLED:
        return CheckResult.failed(DocumentCancelledError("Invoice", invoice.id))
    current = now or utc_now()
    if as_naive_utc(current) > as_naive_utc(invoice.due_date):
        return CheckResult.failed(InvoiceExpiredError(invoice.id))
    return CheckResult.passed()


def validate_order_ownership(order, payer_id: int) -> CheckResult:
    if order.customer_id != payer_id:
        return CheckResult.failed(OwnershipMismatchError())
    return CheckResult.passed()


def validate_order_payment(order, payer_id: int) -> CheckResult:
    if order.status in _ORDER_SETTLED_STATES:
        return CheckResult.failed(AlreadySettledError("Order", order.id))
    if order.status == OrderStatus.CANCELLED:
        return CheckResult.failed(DocumentCancelledError("Order", order.id))
    return validate_order_ownership(order, payer_id)


def validate_stock_availability(
    products: Mapping[int, Any],
    order_items: Iterable[Mapping[str, Any]],
) -> CheckResult:
    """
    Check the whole item list before any decrement is applied.

    Quantities for a product listed on several lines are summed.
    """
    requested: Dict[int, int] = defaultdict(int)
    for item in order_items:
        requested[int(item["product_id"])] += int(item["quantity"])

    for product_id, quantity in requested.items():
        product = products.get(product_id)
        if product is None:
            return CheckResult.failed(
                InsufficientStockError(f"Product {product_id} not found", details={"product_id": product_id})
            )
        if not product.is_active:
            return CheckResult.failed(
                InsufficientStockError(f"Product {product.name} is not available", details={"product_id": product_id})
            )
        if product.quantity < quantity:
            return CheckResult.failed(
                InsufficientStockError(
                    f"Insufficient stock for {product.name}. "
                    f"Available: {product.quantity}, Requested: {quantity}",
                    details={"product_id": product_id, "available": product.quantity, "requested": quantity},
                )
            )
    return CheckResult.passed()


def validate_phone_number(phone_number: str) -> CheckResult:
    normalized = (phone_number or "").replace(" ", "")
    if not ESWATINI_PHONE_PATTERN.match(normalized):
        return CheckResult.failed(RequestValidationFailedError("Invalid Eswatini phone number format"))
    return CheckResult.passed()
