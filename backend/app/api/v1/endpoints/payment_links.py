"""
Payment Link API Endpoints.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.api.v1.responses import operation_response
from backend.app.core.dependencies import get_current_user
from backend.app.db.session import get_session_factory
from backend.app.domain.settlement.settlement_service import SettlementService
from backend.app.schemas.settlement import (
    OperationResult,
    PaymentLinkCreate,
    PaymentLinkRedeem,
    PaymentLinkResponse,
)
from backend.app.services.notifier import CrossAppNotifier

router = APIRouter(prefix="/payment-links", tags=["Payment Links"])


@router.post("", response_model=PaymentLinkResponse, status_code=status.HTTP_201_CREATED)
async def create_payment_link(
    req: PaymentLinkCreate,
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Issue a link for one of the caller's company documents."""
    return await SettlementService.create_payment_link(
        session_factory, req.domain_type, req.domain_id, requested_by=current_user["user_id"]
    )


@router.post("/redeem", response_model=OperationResult)
async def redeem_payment_link(
    req: PaymentLinkRedeem,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Pay the document a link points at, as the calling account."""
    result = await SettlementService.redeem_payment_link(session_factory, req.token, current_user["user_id"])
    if result.success:
        background_tasks.add_task(CrossAppNotifier.drain_quietly, session_factory)
    return operation_response(result)
