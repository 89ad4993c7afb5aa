"""
Account Administration (Domain Logic).

Per-app access flags on accounts. Every account starts with payflow only;
an admin unlocks invoiceflow and stockflow for merchants.
"""

import logging
from typing import Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.exceptions import AccountNotFoundError, RequestValidationFailedError
from backend.app.db.transaction import run_atomic
from backend.app.domain.validation.gate import Operation, authorize, ensure
from backend.app.models.enums import SourceApp
from backend.app.models.user import User
from backend.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)

GRANTABLE_APPS = (SourceApp.INVOICEFLOW, SourceApp.STOCKFLOW)


class AccountService:

    @staticmethod
    async def set_app_permission(
        session_factory: async_sessionmaker,
        actor_id: int,
        user_id: int,
        app: SourceApp,
        granted: bool,
    ) -> Dict[str, bool]:
        """
        Grant or revoke one app flag on an account.

        Args:
            session_factory: Factory for the atomic unit
            actor_id: Account performing the change (must be an admin)
            user_id: Account whose flag changes
            app: invoiceflow or stockflow
            granted: New value of the flag

        Returns:
            The account's permission flags after the change

        Raises:
            InsufficientPermissionsError: Actor is not an active admin
            AccountNotFoundError: Unknown target account
            RequestValidationFailedError: App flag cannot be changed
        """
        if app not in GRANTABLE_APPS:
            raise RequestValidationFailedError(
                f"{app.value} access cannot be changed",
                details={"app": app.value, "grantable": [a.value for a in GRANTABLE_APPS]},
            )

        async def work(db: AsyncSession) -> Dict[str, bool]:
            actor = await db.get(User, actor_id)
            ensure(authorize(Operation.MANAGE_PERMISSIONS, actor))

            account = await db.get(User, user_id)
            if account is None:
                raise AccountNotFoundError(user_id)

            # Reassign so the JSON column is flagged dirty
            permissions = dict(account.permissions or {})
            permissions[app.value] = granted
            account.permissions = permissions
            await db.flush()
            return permissions

        permissions = await run_atomic(session_factory, work, label="set_app_permission")

        action = AuditAction.APP_PERMISSION_GRANTED if granted else AuditAction.APP_PERMISSION_REVOKED
        try:
            await log_event(
                session_factory,
                action,
                actor_id=actor_id,
                resource_type="account",
                resource_id=user_id,
                metadata={"app": app.value},
            )
        except Exception:
            logger.exception("Audit write failed after permission change", extra={"user_id": user_id})

        logger.info(
            "App permission changed",
            extra={"user_id": user_id, "app": app.value, "granted": granted, "actor_id": actor_id},
        )
        return permissions
