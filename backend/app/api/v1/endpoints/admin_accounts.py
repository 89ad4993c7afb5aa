"""
Admin Account API Endpoints.

Grant and revoke per-app access (invoiceflow, stockflow) on accounts.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.guards import require_operation
from backend.app.db.session import get_session_factory
from backend.app.domain.accounts.account_service import AccountService
from backend.app.domain.validation.gate import Operation
from backend.app.models.enums import SourceApp
from backend.app.models.user import User
from backend.app.schemas.account import AppPermissionsResponse

router = APIRouter(prefix="/admin/accounts", tags=["Admin - Accounts"])

require_permission_admin = require_operation(Operation.MANAGE_PERMISSIONS)


@router.put("/{user_id}/apps/{app}", response_model=AppPermissionsResponse)
async def grant_app_permission(
    user_id: int = Path(...),
    app: SourceApp = Path(...),
    admin: User = Depends(require_permission_admin),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    permissions = await AccountService.set_app_permission(session_factory, admin.id, user_id, app, True)
    return AppPermissionsResponse(user_id=user_id, permissions=permissions)


@router.delete("/{user_id}/apps/{app}", response_model=AppPermissionsResponse)
async def revoke_app_permission(
    user_id: int = Path(...),
    app: SourceApp = Path(...),
    admin: User = Depends(require_permission_admin),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    permissions = await AccountService.set_app_permission(session_factory, admin.id, user_id, app, False)
    return AppPermissionsResponse(user_id=user_id, permissions=permissions)
