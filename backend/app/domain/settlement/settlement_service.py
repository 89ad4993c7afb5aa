"""
Settlement Coordinator (Domain Logic).

Wraps the Ledger Engine with the business rules of each payment kind and
applies the matching document change (invoice/order status, stock) in the
same atomic unit as the money movement.

Every public method takes an async_sessionmaker and returns an
OperationResult. Domain errors become failed results; audit and link
bookkeeping run after commit and only ever degrade a success into a
success with warnings.
"""

import logging
import secrets
import time
from collections import defaultdict
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.clock import utc_now
from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AppException,
    InvalidPaymentLinkError,
    PayerNotRegisteredError,
    ProviderError,
    ReceiverNotFoundError,
    RequestValidationFailedError,
    ResourceNotFoundError,
)
from backend.app.core.jwt import create_payment_link_token, decode_payment_link_token
from backend.app.core.token_revocation import is_payment_link_consumed, mark_payment_link_consumed
from backend.app.db.transaction import run_atomic
from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.domain.validation.gate import (
    Operation,
    authorize,
    ensure,
    validate_amount,
    validate_invoice_payment,
    validate_order_payment,
    validate_phone_number,
    validate_stock_availability,
)
from backend.app.models.billing_enums import (
    InvoiceStatus,
    OrderStatus,
    PaymentMethod,
    TransactionType,
)
from backend.app.models.company import Company
from backend.app.models.enums import SourceApp
from backend.app.models.invoice import Invoice
from backend.app.models.order import Order
from backend.app.models.outbox import OutboxEventType
from backend.app.models.product import Product
from backend.app.models.user import User
from backend.app.schemas.ledger import (
    InvoicePaymentMetadata,
    ProductPurchaseMetadata,
    TopUpMetadata,
    TransactionMetadata,
    TransferMetadata,
)
from backend.app.schemas.settlement import OperationResult, PaymentLinkResponse
from backend.app.services.audit import AuditAction, log_event
from backend.app.services.momo_client import MomoClient
from backend.app.services.outbox import append_event

logger = logging.getLogger(__name__)

AUDIT_WARNING = "Audit log could not be written"


async def _load_company(db: AsyncSession, company_id: int) -> Company:
    company = await db.get(Company, company_id)
    if company is None:
        raise ResourceNotFoundError("Company", company_id)
    return company


async def find_account_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalar_one_or_none()


def new_momo_reference() -> str:
    return f"MOMO{int(time.time() * 1000)}{secrets.token_hex(2).upper()}"


async def apply_invoice_paid(db: AsyncSession, invoice: Invoice, transaction_id: int, payer_email: Optional[str]) -> bool:
    """
    Flip an invoice to paid. Returns False when it already is.

    Idempotent: an already paid invoice keeps its status, paid_at and
    payment_transaction_id.
    """
    if invoice.status == InvoiceStatus.PAID:
        return False
    invoice.status = InvoiceStatus.PAID
    invoice.paid_at = utc_now()
    invoice.payment_transaction_id = transaction_id
    await db.flush()
    append_event(
        db,
        OutboxEventType.INVOICE_PAID,
        "invoice",
        invoice.id,
        {
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "company_id": invoice.company_id,
            "transaction_id": transaction_id,
            "amount": str(invoice.total),
            "payer_email": payer_email or invoice.client_email,
        },
    )
    return True


async def apply_order_paid(db: AsyncSession, order: Order, transaction_id: int) -> bool:
    """Order counterpart of apply_invoice_paid."""
    if order.status == OrderStatus.PAID:
        return False
    order.status = OrderStatus.PAID
    order.paid_at = utc_now()
    order.payment_transaction_id = transaction_id
    await db.flush()
    append_event(
        db,
        OutboxEventType.ORDER_PAID,
        "order",
        order.id,
        {
            "order_id": order.id,
            "company_id": order.company_id,
            "transaction_id": transaction_id,
            "amount": str(order.total),
            "payer_email": order.customer_email,
        },
    )
    return True


class SettlementService:

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    @staticmethod
    async def _audit(session_factory: async_sessionmaker, warnings: List[str], action: str, **fields) -> None:
        try:
            await log_event(session_factory, action, **fields)
        except Exception:
            logger.exception("Audit write failed after commit", extra={"action": action})
            warnings.append(AUDIT_WARNING)

    @staticmethod
    async def _execute(
        session_factory: async_sessionmaker,
        label: str,
        work: Callable[[AsyncSession], Awaitable[int]],
        audit_action: str,
        actor_id: Optional[int],
        resource_type: str,
        resource_id: Optional[int],
    ) -> OperationResult:
        """Run one settlement unit, then audit it."""
        try:
            transaction_id = await run_atomic(session_factory, work, label=label)
        except AppException as exc:
            logger.info(
                "Settlement rejected",
                extra={"operation": label, "error_code": exc.error_code, "resource_id": resource_id},
            )
            return OperationResult.from_exception(exc)

        warnings: List[str] = []
        await SettlementService._audit(
            session_factory,
            warnings,
            audit_action,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            transaction_id=transaction_id,
        )
        return OperationResult.ok(transaction_id, warnings)

    # ------------------------------------------------------------------
    # Ledger-facing operations
    # ------------------------------------------------------------------

    @staticmethod
    async def transfer(
        session_factory: async_sessionmaker,
        payer_id: int,
        receiver_id: int,
        amount: Decimal,
        type: TransactionType,
        source_app: SourceApp,
        description: str,
        metadata: TransactionMetadata,
        company_id: Optional[int] = None,
    ) -> OperationResult:
        """Generic ledger transfer in its own atomic unit."""
        async def work(db: AsyncSession) -> int:
            payer = await db.get(User, payer_id)
            ensure(authorize(Operation.LEDGER_TRANSFER, payer))
            txn = await LedgerService.transfer(
                db, payer_id, receiver_id, amount, type, source_app, description, metadata, company_id=company_id
            )
            return txn.id

        return await SettlementService._execute(
            session_factory, "transfer", work, AuditAction.LEDGER_TRANSFER, payer_id, "account", receiver_id
        )

    @staticmethod
    async def top_up_wallet(
        session_factory: async_sessionmaker,
        user_id: int,
        amount: Decimal,
        method: PaymentMethod,
        reference: Optional[str] = None,
    ) -> OperationResult:
        """Credit a wallet from an external funding source (self-transfer)."""
        async def work(db: AsyncSession) -> int:
            account = await db.get(User, user_id)
            ensure(authorize(Operation.TOP_UP, account), validate_amount(amount))
            txn = await LedgerService.transfer(
                db,
                user_id,
                user_id,
                amount,
                TransactionType.WALLET_TOPUP,
                SourceApp.PAYFLOW,
                f"Wallet top-up via {method.value}",
                TopUpMetadata(payment_method=method, reference=reference),
            )
            return txn.id

        return await SettlementService._execute(
            session_factory, "top_up_wallet", work, AuditAction.WALLET_TOPPED_UP, user_id, "account", user_id
        )

    @staticmethod
    async def peer_transfer(
        session_factory: async_sessionmaker,
        payer_id: int,
        receiver_email: str,
        amount: Decimal,
        description: str,
    ) -> OperationResult:
        """Send money to another account identified by email."""
        async def work(db: AsyncSession) -> int:
            payer = await db.get(User, payer_id)
            ensure(authorize(Operation.PEER_TRANSFER, payer), validate_amount(amount))

            receiver = await find_account_by_email(db, receiver_email)
            if receiver is None:
                raise ReceiverNotFoundError(receiver_email)
            if receiver.id == payer_id:
                raise RequestValidationFailedError("Cannot transfer to your own account")

            txn = await LedgerService.transfer(
                db,
                payer_id,
                receiver.id,
                amount,
                TransactionType.TRANSFER,
                SourceApp.PAYFLOW,
                description,
                TransferMetadata(receiver_email=receiver.email),
            )
            return txn.id

        return await SettlementService._execute(
            session_factory, "peer_transfer", work, AuditAction.PEER_TRANSFER, payer_id, "account", None
        )

    # ------------------------------------------------------------------
    # Document settlement
    # ------------------------------------------------------------------

    @staticmethod
    async def settle_invoice(session_factory: async_sessionmaker, invoice_id: int, payer_id: int) -> OperationResult:
        """
        Pay an invoice from the payer's wallet to the issuing company's owner.

        Flow (one atomic unit):
        1. Authorize payer
        2. Load invoice; reject paid, cancelled, overdue
        3. Ledger transfer of invoice.total
        4. Mark invoice paid with the new transaction id

        Concurrent settlements of the same invoice linearize on the
        invoice's version counter: the loser is re-run and sees it paid.
        """
        async def work(db: AsyncSession) -> int:
            payer = await db.get(User, payer_id)
            ensure(authorize(Operation.SETTLE_INVOICE, payer))

            invoice = await db.get(Invoice, invoice_id)
            if invoice is None:
                raise ResourceNotFoundError("Invoice", invoice_id)
            ensure(validate_invoice_payment(invoice))

            company = await _load_company(db, invoice.company_id)
            txn = await LedgerService.transfer(
                db,
                payer_id,
                company.owner_id,
                invoice.total,
                TransactionType.INVOICE_PAYMENT,
                SourceApp.INVOICEFLOW,
                f"Payment for Invoice {invoice.invoice_number}",
                InvoicePaymentMetadata(invoice_id=invoice.id, invoice_number=invoice.invoice_number),
                company_id=company.id,
            )
            await apply_invoice_paid(db, invoice, txn.id, payer.email)
            return txn.id

        return await SettlementService._execute(
            session_factory, "settle_invoice", work, AuditAction.INVOICE_SETTLED, payer_id, "invoice", invoice_id
        )

    @staticmethod
    async def settle_order(session_factory: async_sessionmaker, order_id: int, payer_id: int) -> OperationResult:
        """
        Pay an order and take its items out of stock.

        Flow (one atomic unit):
        1. Authorize payer as the order's customer
        2. Reject paid/shipped/delivered and cancelled orders
        3. Check stock for the whole item list
        4. Ledger transfer of order.total
        5. Decrement every product, mark order paid

        Any failure leaves stock, balances and the order untouched.
        """
        async def work(db: AsyncSession) -> int:
            payer = await db.get(User, payer_id)
            order = await db.get(Order, order_id)
            if payer is not None and order is None:
                raise ResourceNotFoundError("Order", order_id)
            ensure(authorize(Operation.SETTLE_ORDER, payer, order))
            ensure(validate_order_payment(order, payer_id))

            requested: Dict[int, int] = defaultdict(int)
            for item in order.items:
                requested[int(item["product_id"])] += int(item["quantity"])

            result = await db.execute(
                select(Product).where(Product.id.in_(list(requested)), Product.company_id == order.company_id)
            )
            products = {product.id: product for product in result.scalars().all()}
            ensure(validate_stock_availability(products, order.items))

            company = await _load_company(db, order.company_id)
            txn = await LedgerService.transfer(
                db,
                payer_id,
                company.owner_id,
                order.total,
                TransactionType.PRODUCT_PURCHASE,
                SourceApp.STOCKFLOW,
                f"Payment for Order {order.id}",
                ProductPurchaseMetadata(order_id=order.id, product_ids=sorted(requested)),
                company_id=company.id,
            )

            for product_id, quantity in requested.items():
                products[product_id].quantity = products[product_id].quantity - quantity

            await apply_order_paid(db, order, txn.id)
            return txn.id

        return await SettlementService._execute(
            session_factory, "settle_order", work, AuditAction.ORDER_SETTLED, payer_id, "order", order_id
        )

    @staticmethod
    async def mark_invoice_paid(
        session_factory: async_sessionmaker, invoice_id: int, transaction_id: int
    ) -> OperationResult:
        """Idempotent status patch; re-applying it changes nothing."""
        async def work(db: AsyncSession) -> int:
            invoice = await db.get(Invoice, invoice_id)
            if invoice is None:
                raise ResourceNotFoundError("Invoice", invoice_id)
            await apply_invoice_paid(db, invoice, transaction_id, None)
            return invoice.payment_transaction_id

        try:
            current = await run_atomic(session_factory, work, label="mark_invoice_paid")
        except AppException as exc:
            return OperationResult.from_exception(exc)
        return OperationResult.ok(current)

    @staticmethod
    async def mark_order_paid(
        session_factory: async_sessionmaker, order_id: int, transaction_id: int
    ) -> OperationResult:
        async def work(db: AsyncSession) -> int:
            order = await db.get(Order, order_id)
            if order is None:
                raise ResourceNotFoundError("Order", order_id)
            await apply_order_paid(db, order, transaction_id)
            return order.payment_transaction_id

        try:
            current = await run_atomic(session_factory, work, label="mark_order_paid")
        except AppException as exc:
            return OperationResult.from_exception(exc)
        return OperationResult.ok(current)

    # ------------------------------------------------------------------
    # Payment links and the cross-app registration path
    # ------------------------------------------------------------------

    @staticmethod
    async def create_payment_link(
        session_factory: async_sessionmaker,
        domain_type: str,
        domain_id: int,
        requested_by: Optional[int] = None,
    ) -> PaymentLinkResponse:
        """
        Issue a signed, expiring link that settles one invoice or order.

        Raises:
            ResourceNotFoundError: unknown document
            InsufficientPermissionsError: requester does not own the company
        """
        model = Invoice if domain_type == "invoice" else Order
        async with session_factory() as db:
            document = await db.get(model, domain_id)
            if document is None:
                raise ResourceNotFoundError(model.__name__, domain_id)
            if requested_by is not None:
                requester = await db.get(User, requested_by)
                company = await _load_company(db, document.company_id)
                ensure(authorize(Operation.CREATE_PAYMENT_LINK, requester, company))

        token = create_payment_link_token(domain_type, domain_id)
        url = f"{settings.payment_link_base_url.rstrip('/')}/pay/{domain_type}/{domain_id}?token={token}"
        logger.info("Payment link issued", extra={"domain_type": domain_type, "domain_id": domain_id})
        return PaymentLinkResponse(url=url, token=token, domain_type=domain_type, domain_id=domain_id)

    @staticmethod
    async def _request_payment(
        session_factory: async_sessionmaker,
        domain_type: str,
        domain_id: int,
        payer_email: str,
        requested_by: Optional[int],
        settle: Callable[[async_sessionmaker, int, int], Awaitable[OperationResult]],
    ) -> OperationResult:
        model = Invoice if domain_type == "invoice" else Order
        operation = Operation.ISSUE_INVOICE if domain_type == "invoice" else Operation.MANAGE_INVENTORY
        try:
            async with session_factory() as db:
                document = await db.get(model, domain_id)
                if document is None:
                    raise ResourceNotFoundError(model.__name__, domain_id)
                if requested_by is not None:
                    requester = await db.get(User, requested_by)
                    company = await _load_company(db, document.company_id)
                    ensure(authorize(operation, requester, company))
                payer = await find_account_by_email(db, payer_email)
        except AppException as exc:
            return OperationResult.from_exception(exc)

        if payer is not None:
            return await settle(session_factory, domain_id, payer.id)

        try:
            link = await SettlementService.create_payment_link(session_factory, domain_type, domain_id)
        except AppException as exc:
            return OperationResult.from_exception(exc)

        warnings: List[str] = []
        await SettlementService._audit(
            session_factory,
            warnings,
            AuditAction.PAYMENT_LINK_ISSUED,
            actor_id=requested_by,
            resource_type=domain_type,
            resource_id=domain_id,
            metadata={"payer_email": payer_email},
        )
        result = OperationResult.from_exception(PayerNotRegisteredError(link.url))
        result.warnings = warnings
        return result

    @staticmethod
    async def request_invoice_payment(
        session_factory: async_sessionmaker, invoice_id: int, payer_email: str, requested_by: Optional[int] = None
    ) -> OperationResult:
        """
        Settle an invoice on behalf of a payer known only by email.

        Registered payers are charged immediately. Unknown payers get a
        failed, non-retryable result carrying a payment link.
        """
        return await SettlementService._request_payment(
            session_factory, "invoice", invoice_id, payer_email, requested_by, SettlementService.settle_invoice
        )

    @staticmethod
    async def request_order_payment(
        session_factory: async_sessionmaker, order_id: int, payer_email: str, requested_by: Optional[int] = None
    ) -> OperationResult:
        return await SettlementService._request_payment(
            session_factory, "order", order_id, payer_email, requested_by, SettlementService.settle_order
        )

    @staticmethod
    async def redeem_payment_link(session_factory: async_sessionmaker, token: str, payer_id: int) -> OperationResult:
        """Settle the document a payment link is bound to, once."""
        try:
            claims = decode_payment_link_token(token)
            if await is_payment_link_consumed(claims["jti"]):
                raise InvalidPaymentLinkError("Payment link has already been used")
        except AppException as exc:
            return OperationResult.from_exception(exc)

        if claims["domain_type"] == "invoice":
            result = await SettlementService.settle_invoice(session_factory, claims["domain_id"], payer_id)
        else:
            result = await SettlementService.settle_order(session_factory, claims["domain_id"], payer_id)

        if not result.success:
            return result

        try:
            await mark_payment_link_consumed(claims["jti"], result.transaction_id)
        except Exception:
            logger.exception("Could not mark payment link consumed", extra={"transaction_id": result.transaction_id})
            result.warnings.append("Payment link could not be marked as used")

        await SettlementService._audit(
            session_factory,
            result.warnings,
            AuditAction.PAYMENT_LINK_REDEEMED,
            actor_id=payer_id,
            resource_type=claims["domain_type"],
            resource_id=claims["domain_id"],
            transaction_id=result.transaction_id,
        )
        return result

    # ------------------------------------------------------------------
    # Mobile money top-ups
    # ------------------------------------------------------------------

    @staticmethod
    async def initiate_momo_topup(
        session_factory: async_sessionmaker,
        momo_client: MomoClient,
        user_id: int,
        phone_number: str,
        amount: Decimal,
    ) -> OperationResult:
        """
        Open a pending top-up and ask the provider to collect it.

        The provider's webhook later completes or fails the transaction.
        When the provider refuses outright, the pending transaction is
        failed immediately.
        """
        reference = new_momo_reference()

        async def work(db: AsyncSession) -> int:
            account = await db.get(User, user_id)
            ensure(authorize(Operation.TOP_UP, account), validate_phone_number(phone_number), validate_amount(amount))
            txn = await LedgerService.open_pending_topup(
                db, user_id, amount, PaymentMethod.MOMO, reference, phone_number=phone_number
            )
            return txn.id

        try:
            transaction_id = await run_atomic(session_factory, work, label="initiate_momo_topup")
        except AppException as exc:
            return OperationResult.from_exception(exc)

        try:
            await momo_client.request_to_pay(phone_number, amount, reference, description="PayFlow wallet top-up")
        except ProviderError as exc:
            await SettlementService._fail_pending(session_factory, reference, amount)
            result = OperationResult.from_exception(exc)
            result.transaction_id = transaction_id
            result.details = {**result.details, "reference": reference}
            return result

        warnings: List[str] = []
        await SettlementService._audit(
            session_factory,
            warnings,
            AuditAction.TOPUP_INITIATED,
            actor_id=user_id,
            resource_type="transaction",
            resource_id=transaction_id,
            transaction_id=transaction_id,
            metadata={"reference": reference},
        )
        return OperationResult(
            success=True,
            transaction_id=transaction_id,
            warnings=warnings,
            details={"reference": reference, "status": "pending"},
        )

    @staticmethod
    async def _fail_pending(session_factory: async_sessionmaker, reference: str, amount: Decimal) -> None:
        async def work(db: AsyncSession) -> int:
            txn = await LedgerService.resolve_pending(db, reference, successful=False, amount=amount)
            return txn.id

        try:
            await run_atomic(session_factory, work, label="fail_pending_topup")
        except AppException:
            logger.exception("Could not fail pending top-up", extra={"reference": reference})

    @staticmethod
    async def handle_momo_webhook(
        session_factory: async_sessionmaker, reference: str, successful: bool, amount: Decimal
    ) -> OperationResult:
        """Resolve a pending top-up from the provider's confirmation."""
        async def work(db: AsyncSession):
            txn = await LedgerService.resolve_pending(db, reference, successful=successful, amount=amount)
            return txn.id, txn.status.value, txn.payer_id

        try:
            transaction_id, status, user_id = await run_atomic(session_factory, work, label="momo_webhook")
        except AppException as exc:
            logger.warning("Momo webhook rejected", extra={"reference": reference, "error_code": exc.error_code})
            return OperationResult.from_exception(exc)

        warnings: List[str] = []
        await SettlementService._audit(
            session_factory,
            warnings,
            AuditAction.TOPUP_CONFIRMED if successful else AuditAction.TOPUP_DECLINED,
            actor_id=user_id,
            resource_type="transaction",
            resource_id=transaction_id,
            transaction_id=transaction_id,
            metadata={"reference": reference},
        )
        return OperationResult(
            success=True,
            transaction_id=transaction_id,
            warnings=warnings,
            details={"reference": reference, "status": status},
        )
