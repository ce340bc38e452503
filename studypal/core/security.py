import logging
from datetime import datetime, timedelta
from typing import Optional
from jose import jwt
from studypal.core.config import SUPABASE_JWT_SECRET, JWT_ALGORITHM, JWT_AUDIENCE

logger = logging.getLogger(__name__)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a Supabase-issued access token.

    Args:
        token: Raw bearer token

    Returns:
        Token claims (``sub`` is the user id)

    Raises:
        jose.JWTError: If the signature, expiry or audience is invalid
    """
    return jwt.decode(
        token,
        SUPABASE_JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        audience=JWT_AUDIENCE,
    )


def create_access_token(user_id: str, email: Optional[str] = None, expires_delta: timedelta = None):
    to_encode = {
        "sub": user_id,
        "aud": JWT_AUDIENCE,
        "role": "authenticated",
    }
    if email:
        to_encode["email"] = email
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SUPABASE_JWT_SECRET, algorithm=JWT_ALGORITHM)
