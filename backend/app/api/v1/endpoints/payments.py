"""
Payments API Endpoints.

Wallet balance, history, top-ups and transfers for the calling account.
"""

from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.api.v1.responses import operation_response
from backend.app.core.config import settings
from backend.app.core.dependencies import get_current_account, get_current_user
from backend.app.db.session import get_db, get_session_factory
from backend.app.domain.settlement.settlement_service import SettlementService
from backend.app.models.billing_enums import TransactionType
from backend.app.models.enums import SourceApp
from backend.app.models.user import User
from backend.app.schemas.ledger import (
    MomoTopUpRequest,
    PeerTransferRequest,
    TopUpRequest,
    TransactionResponse,
    TransferMetadata,
    TransferRequest,
    WalletResponse,
)
from backend.app.schemas.settlement import OperationResult
from backend.app.services.analytics import AnalyticsService
from backend.app.services.momo_client import MomoClient, get_momo_client
from backend.app.services.notifier import CrossAppNotifier

router = APIRouter(prefix="/payments", tags=["Payments"])


def _notify_on_success(result: OperationResult, background_tasks: BackgroundTasks, session_factory) -> None:
    if result.success:
        background_tasks.add_task(CrossAppNotifier.drain_quietly, session_factory)


@router.get("/wallet", response_model=WalletResponse)
async def get_wallet(account: User = Depends(get_current_account)):
    """Current balance of the caller's wallet."""
    return WalletResponse(
        user_id=account.id,
        wallet_balance=account.wallet_balance,
        currency=settings.currency,
        is_active=account.is_active,
    )


@router.get("/transactions", response_model=List[TransactionResponse])
async def list_my_transactions(
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await AnalyticsService.user_transactions(db, current_user["user_id"], limit)


@router.post("/topup", response_model=OperationResult)
async def top_up(
    req: TopUpRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    result = await SettlementService.top_up_wallet(
        session_factory, current_user["user_id"], req.amount, req.method, req.reference
    )
    _notify_on_success(result, background_tasks, session_factory)
    return operation_response(result)


@router.post("/topup/momo", response_model=OperationResult)
async def top_up_momo(
    req: MomoTopUpRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    momo_client: MomoClient = Depends(get_momo_client)
):
    """
    Start a mobile money top-up.

    Returns the pending transaction and its provider reference; the
    balance moves when the provider's webhook confirms.
    """
    result = await SettlementService.initiate_momo_topup(
        session_factory, momo_client, current_user["user_id"], req.phone_number, req.amount
    )
    if not result.success and result.transaction_id:
        # Failed pending transaction produces a "Payment Failed" notification
        background_tasks.add_task(CrossAppNotifier.drain_quietly, session_factory)
    return operation_response(result)


@router.post("/transfer", response_model=OperationResult)
async def peer_transfer(
    req: PeerTransferRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Send money to another account by email."""
    result = await SettlementService.peer_transfer(
        session_factory, current_user["user_id"], req.receiver_email, req.amount, req.description
    )
    _notify_on_success(result, background_tasks, session_factory)
    return operation_response(result)


@router.post("/transfer/direct", response_model=OperationResult)
async def direct_transfer(
    req: TransferRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Ledger transfer to a known account id."""
    result = await SettlementService.transfer(
        session_factory,
        current_user["user_id"],
        req.receiver_id,
        req.amount,
        TransactionType.TRANSFER,
        SourceApp.PAYFLOW,
        req.description,
        TransferMetadata(reference=req.reference),
    )
    _notify_on_success(result, background_tasks, session_factory)
    return operation_response(result)
