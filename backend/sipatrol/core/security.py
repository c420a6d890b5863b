"""
Bearer-token verification for tokens issued by the external identity provider.
The identity provider owns sign-in; this module only checks signatures and
resolves the caller's SiPatrol profile.
"""
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import settings
from ..models.base import get_db
from ..models.profile import Profile

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(subject: str, expires_minutes: int = 60, extra: Optional[dict] = None) -> str:
    """Mint a token the way the identity provider does (development and tests)."""
    to_encode = dict(extra or {})
    to_encode.update({
        "sub": subject,
        "exp": datetime.utcnow() + timedelta(minutes=expires_minutes),
    })
    return jwt.encode(to_encode, settings.IDENTITY_JWT_SECRET, algorithm=settings.IDENTITY_JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.IDENTITY_JWT_SECRET, algorithms=[settings.IDENTITY_JWT_ALGORITHM])
    except JWTError:
        return None


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Return the identity provider subject of a valid bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise credentials_exception
    return payload["sub"]


def get_current_user(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Profile:
    """Resolve the caller's profile; signed-in users without one must onboard first."""
    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if not profile:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Profile not found")
    return profile

