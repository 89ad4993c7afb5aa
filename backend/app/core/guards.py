"""
Security guards for whole endpoints.

Every capability decision goes through domain.validation.gate.authorize;
these dependencies only run it against the caller's account row before
the endpoint body executes.
"""

from fastapi import Depends

from backend.app.core.dependencies import get_current_account
from backend.app.domain.validation.gate import Operation, authorize, ensure
from backend.app.models.user import User


def require_operation(operation: Operation):
    """
    Dependency factory: the caller's account must be authorized for ``operation``.

    Usage:
        @router.post("/admin/ops/outbox/drain")
        async def drain(admin: User = Depends(require_operation(Operation.RUN_OPS))):
            ...
    """
    async def operation_checker(account: User = Depends(get_current_account)) -> User:
        ensure(authorize(operation, account))
        return account

    return operation_checker
