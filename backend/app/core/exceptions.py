"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
Every failure is rendered in the same shape as a settlement
OperationResult so that callers can tell a retryable failure from a
terminal one.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: Dict[str, Any] = None,
        retryable: bool = False,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        self.retryable = retryable
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class TokenRevokedError(AppException):
    """Raised when token has been revoked."""

    def __init__(self):
        super().__init__(
            message="Token has been revoked",
            error_code="ERR_AUTH_002",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class RequestValidationFailedError(AppException):
    """Raised when a document or request breaks a data-model rule."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


# Ledger errors

class InvalidAmountError(AppException):
    """Raised when an amount is not positive or exceeds the transaction ceiling."""

    def __init__(self, message: str = "Invalid amount", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InsufficientFundsError(AppException):
    """Raised when the payer's wallet cannot cover the amount."""

    def __init__(self, account_id: Any = None, details: Dict[str, Any] = None):
        super().__init__(
            message="Insufficient wallet balance",
            error_code="ERR_LEDGER_002",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"account_id": account_id, **(details or {})}
        )


class AccountInactiveError(AppException):
    """Raised when either party of a transfer is deactivated."""

    def __init__(self, account_id: Any = None):
        super().__init__(
            message="One or more accounts are inactive",
            error_code="ERR_LEDGER_003",
            status_code=status.HTTP_403_FORBIDDEN,
            details={"account_id": account_id}
        )


class AccountNotFoundError(AppException):
    """Raised when a transfer references an unknown account."""

    def __init__(self, account_id: Any = None):
        super().__init__(
            message=f"Account {account_id} not found" if account_id is not None else "Account not found",
            error_code="ERR_LEDGER_004",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"account_id": account_id}
        )


class ReceiverNotFoundError(AppException):
    """Raised when a peer transfer's receiver email has no account."""

    def __init__(self, email: str = None):
        super().__init__(
            message="Recipient not found",
            error_code="ERR_LEDGER_005",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"email": email}
        )


# Settlement errors

class AlreadySettledError(AppException):
    """Raised when an invoice or order has already been paid."""

    def __init__(self, resource: str, resource_id: Any = None):
        super().__init__(
            message=f"{resource} already paid",
            error_code="ERR_SETTLE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource": resource, "id": resource_id}
        )


class DocumentCancelledError(AppException):
    """Raised when an invoice or order has been cancelled."""

    def __init__(self, resource: str, resource_id: Any = None):
        super().__init__(
            message=f"{resource} has been cancelled",
            error_code="ERR_SETTLE_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource": resource, "id": resource_id}
        )


class InvoiceExpiredError(AppException):
    """Raised when an invoice is paid after its due date."""

    def __init__(self, invoice_id: Any = None):
        super().__init__(
            message="Invoice is overdue",
            error_code="ERR_SETTLE_003",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"invoice_id": invoice_id}
        )


class InsufficientStockError(AppException):
    """Raised when an order cannot be filled from current stock."""

    def __init__(self, message: str = "Insufficient stock", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_SETTLE_004",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class OwnershipMismatchError(AppException):
    """Raised when a payer settles an order that belongs to someone else."""

    def __init__(self, message: str = "You can only pay for your own orders"):
        super().__init__(
            message=message,
            error_code="ERR_SETTLE_005",
            status_code=status.HTTP_403_FORBIDDEN
        )


class PayerNotRegisteredError(AppException):
    """Raised when the payer email is unknown; carries a deferred payment link."""

    def __init__(self, payment_link: str):
        super().__init__(
            message="Customer needs to register in PayFlow first",
            error_code="ERR_SETTLE_006",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"payment_link": payment_link}
        )


class InvalidPaymentLinkError(AppException):
    """Raised for malformed, expired or already consumed payment links."""

    def __init__(self, message: str = "Invalid payment link"):
        super().__init__(
            message=message,
            error_code="ERR_LINK_001",
            status_code=status.HTTP_400_BAD_REQUEST
        )


# Transient errors

class ConcurrencyConflictError(AppException):
    """Raised when an atomic unit kept losing to concurrent writers."""

    def __init__(self, attempts: int = 0):
        super().__init__(
            message="Concurrent update conflict, please retry",
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"attempts": attempts},
            retryable=True
        )


class ProviderError(AppException):
    """Raised when the mobile money provider is unavailable or declines."""

    def __init__(self, message: str = "Payment provider unavailable", retryable: bool = True):
        super().__init__(
            message=message,
            error_code="ERR_PROVIDER_001",
            status_code=status.HTTP_502_BAD_GATEWAY,
            retryable=retryable
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
            "retryable": exc.retryable
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error_code": error_code,
            "message": exc.detail,
            "details": {},
            "retryable": False
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            },
            "retryable": False
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {},
            "retryable": True
        }
    )
