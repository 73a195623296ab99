"""
JWT token utilities for bearer authentication.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fitsocial.app.core.config import settings


def create_access_token(user_id: int, username: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Issue a signed access token for a user.

    Payload:
        {
            "sub": "42",
            "user_id": 42,
            "username": "runner42",
            "jti": "<uuid4 hex>",
            "exp": 1234567890
        }

    ``jti`` makes every token unique so a single session can be revoked on logout.
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode = {
        "sub": str(user_id),
        "user_id": user_id,
        "username": username,
        "jti": uuid.uuid4().hex,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate an access token.

    Returns:
        Decoded payload if signature and expiry are valid, None otherwise
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
