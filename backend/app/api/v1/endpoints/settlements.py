"""
Settlement API Endpoints.

Invoice and order payment, plus the cross-app path where a company asks
for payment from an email address.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Path
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.api.v1.responses import operation_response
from backend.app.core.dependencies import get_current_user
from backend.app.db.session import get_session_factory
from backend.app.domain.settlement.settlement_service import SettlementService
from backend.app.schemas.settlement import OperationResult, PaymentRequest
from backend.app.services.notifier import CrossAppNotifier

router = APIRouter(prefix="/settlements", tags=["Settlements"])


@router.post("/invoices/{invoice_id}/pay", response_model=OperationResult)
async def pay_invoice(
    background_tasks: BackgroundTasks,
    invoice_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Pay an invoice from the caller's wallet."""
    result = await SettlementService.settle_invoice(session_factory, invoice_id, current_user["user_id"])
    if result.success:
        background_tasks.add_task(CrossAppNotifier.drain_quietly, session_factory)
    return operation_response(result)


@router.post("/orders/{order_id}/pay", response_model=OperationResult)
async def pay_order(
    background_tasks: BackgroundTasks,
    order_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Pay one of the caller's own orders."""
    result = await SettlementService.settle_order(session_factory, order_id, current_user["user_id"])
    if result.success:
        background_tasks.add_task(CrossAppNotifier.drain_quietly, session_factory)
    return operation_response(result)


@router.post("/invoices/{invoice_id}/request-payment", response_model=OperationResult)
async def request_invoice_payment(
    req: PaymentRequest,
    background_tasks: BackgroundTasks,
    invoice_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Charge a registered payer, or hand back a payment link for an
    unregistered one.
    """
    result = await SettlementService.request_invoice_payment(
        session_factory, invoice_id, req.payer_email, requested_by=current_user["user_id"]
    )
    if result.success:
        background_tasks.add_task(CrossAppNotifier.drain_quietly, session_factory)
    return operation_response(result)


@router.post("/orders/{order_id}/request-payment", response_model=OperationResult)
async def request_order_payment(
    req: PaymentRequest,
    background_tasks: BackgroundTasks,
    order_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    result = await SettlementService.request_order_payment(
        session_factory, order_id, req.payer_email, requested_by=current_user["user_id"]
    )
    if result.success:
        background_tasks.add_task(CrossAppNotifier.drain_quietly, session_factory)
    return operation_response(result)
