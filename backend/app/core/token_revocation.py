"""
Token Revocation System using Redis.

Bearer tokens can be blacklisted until they expire; payment links are
marked consumed once their settlement has committed.
"""

import logging

from backend.app.core.config import settings
from backend.app.core.redis_client import get_redis_client

logger = logging.getLogger(__name__)

# Redis key prefixes
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
USER_TOKENS_PREFIX = "user:tokens:"
CONSUMED_LINK_PREFIX = "payment_link:consumed:"


async def revoke_token(token: str, user_id: int) -> bool:
    """
    Revoke a specific JWT token by adding it to the blacklist.

    Returns:
        True if successfully revoked, False otherwise
    """
    try:
        ttl_seconds = settings.access_token_expire_minutes * 60
        await get_redis_client().setex(f"{TOKEN_BLACKLIST_PREFIX}{token}", ttl_seconds, str(user_id))
        return True
    except Exception:
        logger.exception("Error revoking token", extra={"user_id": user_id})
        return False


async def is_token_revoked(token: str) -> bool:
    """
    Check if a token has been revoked.

    Fails open when Redis is unreachable; account state is still checked
    against the database on every request.
    """
    try:
        exists = await get_redis_client().exists(f"{TOKEN_BLACKLIST_PREFIX}{token}")
        return exists > 0
    except Exception:
        logger.exception("Error checking token revocation")
        return False


async def revoke_all_user_tokens(user_id: int) -> bool:
    """Revoke every outstanding token of a deactivated account."""
    try:
        ttl_seconds = settings.access_token_expire_minutes * 60
        await get_redis_client().setex(f"{USER_TOKENS_PREFIX}{user_id}:revoked", ttl_seconds, "1")
        return True
    except Exception:
        logger.exception("Error revoking all tokens", extra={"user_id": user_id})
        return False


async def are_user_tokens_revoked(user_id: int) -> bool:
    try:
        exists = await get_redis_client().exists(f"{USER_TOKENS_PREFIX}{user_id}:revoked")
        return exists > 0
    except Exception:
        logger.exception("Error checking user token revocation", extra={"user_id": user_id})
        return False


async def mark_payment_link_consumed(jti: str, transaction_id: int) -> None:
    """Remember a redeemed link until it would have expired anyway. Raises on Redis failure."""
    ttl_seconds = settings.payment_link_expire_minutes * 60
    await get_redis_client().setex(f"{CONSUMED_LINK_PREFIX}{jti}", ttl_seconds, str(transaction_id))


async def is_payment_link_consumed(jti: str) -> bool:
    try:
        exists = await get_redis_client().exists(f"{CONSUMED_LINK_PREFIX}{jti}")
        return exists > 0
    except Exception:
        logger.exception("Error checking payment link state", extra={"jti": jti})
        return False
