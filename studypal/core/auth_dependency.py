from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError

from studypal.core.identity import Anonymous, Authenticated, Identity
from studypal.core.security import decode_access_token
from studypal.db.session import SessionLocal

bearer_scheme = HTTPBearer(auto_error=False)


def get_db():
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def resolve_identity(token: Optional[str], device_id: Optional[str]) -> Identity:
    """
    Resolve the caller from an optional bearer token or device id.

    A token always wins; without one the caller is anonymous and must
    identify its device.
    """
    if token:
        try:
            payload = decode_access_token(token)
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(status_code=401, detail="Invalid token")

        return Authenticated(user_id=user_id, email=payload.get("email"))

    if not device_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Device-Id header is required for anonymous access"
        )
    return Anonymous(device_id=device_id)


def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_device_id: Optional[str] = Header(None),
) -> Identity:
    """Get the caller identity (signed-in user or anonymous device)."""
    token = credentials.credentials if credentials else None
    return resolve_identity(token, x_device_id)


def get_authenticated_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Authenticated:
    """Get the signed-in caller; anonymous access is rejected."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return resolve_identity(credentials.credentials, None)
