"""
JWT token utilities.

Bearer tokens are issued by the identity provider and only verified here
(create_access_token exists for seeding and tests). Payment links carry a
signed token of their own, bound to the document they settle.
"""

import uuid
from datetime import timedelta
from typing import Optional, Dict, Any
from jose import ExpiredSignatureError, JWTError, jwt

from backend.app.core.clock import utc_now
from backend.app.core.config import settings
from backend.app.core.exceptions import InvalidPaymentLinkError

PAYMENT_LINK_PURPOSE = "payment_link"


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload to encode (should include: sub, user_id, role)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = utc_now() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.

    Returns:
        Decoded payload if valid, None otherwise. Payment-link tokens are
        not accepted as bearer tokens.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("purpose") == PAYMENT_LINK_PURPOSE:
        return None
    return payload


def create_payment_link_token(domain_type: str, domain_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Signed, expiring token naming the invoice or order it settles."""
    expire = utc_now() + (expires_delta or timedelta(minutes=settings.payment_link_expire_minutes))
    claims = {
        "purpose": PAYMENT_LINK_PURPOSE,
        "domain_type": domain_type,
        "domain_id": domain_id,
        "jti": uuid.uuid4().hex,
        "exp": expire,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_payment_link_token(token: str) -> Dict[str, Any]:
    """
    Verify a payment-link token.

    Raises:
        InvalidPaymentLinkError: bad signature, expired, or not a link token
    """
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise InvalidPaymentLinkError("Payment link has expired")
    except JWTError:
        raise InvalidPaymentLinkError()

    if claims.get("purpose") != PAYMENT_LINK_PURPOSE:
        raise InvalidPaymentLinkError()
    if claims.get("domain_type") not in ("invoice", "order") or not isinstance(claims.get("domain_id"), int):
        raise InvalidPaymentLinkError()
    return claims
