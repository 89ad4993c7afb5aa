"""
Provider Webhook Endpoints.

Called by the mobile money provider, not by users: authenticated with a
shared secret header instead of a bearer token.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.api.v1.responses import operation_response
from backend.app.core.config import settings
from backend.app.db.session import get_session_factory
from backend.app.domain.settlement.settlement_service import SettlementService
from backend.app.schemas.ledger import MomoWebhookPayload
from backend.app.schemas.settlement import OperationResult
from backend.app.services.notifier import CrossAppNotifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def verify_webhook_secret(x_webhook_secret: Optional[str] = Header(default=None)) -> None:
    expected = settings.momo_webhook_secret
    if not expected:
        return
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        logger.warning("Rejected momo webhook with bad secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/momo", response_model=OperationResult, dependencies=[Depends(verify_webhook_secret)])
async def momo_webhook(
    payload: MomoWebhookPayload,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Resolve a pending top-up by its provider reference."""
    result = await SettlementService.handle_momo_webhook(
        session_factory, payload.reference, payload.status == "SUCCESSFUL", payload.amount
    )
    if result.success:
        background_tasks.add_task(CrossAppNotifier.drain_quietly, session_factory)
    return operation_response(result)
