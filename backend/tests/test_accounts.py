"""
Account Administration Tests.

Admins unlock invoiceflow and stockflow for merchants; nobody else can.
"""

import pytest
from sqlalchemy import select

from backend.app.core.exceptions import (
    AccountNotFoundError,
    InsufficientPermissionsError,
    RequestValidationFailedError,
)
from backend.app.domain.accounts.account_service import AccountService
from backend.app.models.audit_log import AuditLog
from backend.app.models.enums import SourceApp, UserRole
from backend.app.models.user import User, default_permissions


@pytest.mark.asyncio
async def test_grant_unlocks_app(session_factory, make_user, reload):
    admin = await make_user(role=UserRole.ADMIN)
    merchant = await make_user(permissions=default_permissions())

    permissions = await AccountService.set_app_permission(
        session_factory, admin.id, merchant.id, SourceApp.INVOICEFLOW, True
    )

    assert permissions == {"payflow": True, "invoiceflow": True, "stockflow": False}
    stored = await reload(User, merchant.id)
    assert stored.has_app_permission("invoiceflow")
    assert not stored.has_app_permission("stockflow")

    async with session_factory() as db:
        entry = (await db.execute(select(AuditLog))).scalars().one()
    assert entry.action == "APP_PERMISSION_GRANTED"
    assert entry.actor_id == admin.id
    assert entry.meta_data == {"app": "invoiceflow"}


@pytest.mark.asyncio
async def test_revoke_removes_app(session_factory, make_user, reload):
    admin = await make_user(role=UserRole.ADMIN)
    merchant = await make_user()

    await AccountService.set_app_permission(session_factory, admin.id, merchant.id, SourceApp.STOCKFLOW, False)

    assert not (await reload(User, merchant.id)).has_app_permission("stockflow")


@pytest.mark.asyncio
async def test_non_admin_cannot_grant(session_factory, make_user, reload):
    merchant = await make_user(permissions=default_permissions())

    with pytest.raises(InsufficientPermissionsError):
        await AccountService.set_app_permission(
            session_factory, merchant.id, merchant.id, SourceApp.STOCKFLOW, True
        )

    assert not (await reload(User, merchant.id)).has_app_permission("stockflow")


@pytest.mark.asyncio
async def test_payflow_access_is_not_grantable(session_factory, make_user):
    admin = await make_user(role=UserRole.ADMIN)
    user = await make_user()

    with pytest.raises(RequestValidationFailedError):
        await AccountService.set_app_permission(session_factory, admin.id, user.id, SourceApp.PAYFLOW, False)


@pytest.mark.asyncio
async def test_unknown_account(session_factory, make_user):
    admin = await make_user(role=UserRole.ADMIN)
    with pytest.raises(AccountNotFoundError):
        await AccountService.set_app_permission(session_factory, admin.id, 4040, SourceApp.STOCKFLOW, True)
