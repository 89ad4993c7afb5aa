"""
Authentication dependencies for FastAPI.

Bearer tokens come from the external identity provider; the core only
verifies them and trusts its own account row for role, permissions and
the active flag.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.core.jwt import decode_access_token
from backend.app.core.token_revocation import is_token_revoked, are_user_tokens_revoked
from backend.app.db.session import get_db
from backend.app.models.user import User

# HTTP Bearer security scheme
security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_account(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Resolve the bearer token to the caller's account row.

    Checks, in order:
    1. JWT signature and expiry
    2. Token not individually revoked
    3. Account tokens not globally revoked
    4. Account exists and is active (real-time database check)

    Raises:
        HTTPException: 401 for token problems, 403 for an inactive account
    """
    token = credentials.credentials

    payload = decode_access_token(token)
    if payload is None:
        raise _unauthorized("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise _unauthorized("Invalid token payload")

    if await is_token_revoked(token):
        raise _unauthorized("Token has been revoked")

    if await are_user_tokens_revoked(user_id):
        raise _unauthorized("User access has been revoked")

    user = await db.get(User, user_id)
    if not user:
        raise _unauthorized("User not found")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return user


async def get_current_user(account: User = Depends(get_current_account)) -> dict:
    """Principal as a plain dict: user_id, email, role and app permissions."""
    return {
        "user_id": account.id,
        "email": account.email,
        "role": account.role.value,
        "permissions": dict(account.permissions or {}),
    }
