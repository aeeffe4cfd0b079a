"""
Password hashing, JWT issuance and the bearer-token dependencies.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from settings import settings

VALID_ROLES = ("user", "admin", "seller")

ACCESS_PURPOSE = "access"
RESET_PURPOSE = "reset"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Security scheme for bearer tokens
security = HTTPBearer(auto_error=False)


class TokenUser(BaseModel):
    """User data extracted from an access token"""
    id: str
    role: str = "user"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_token(user_id: str, role: str, purpose: str = ACCESS_PURPOSE, expires_minutes: Optional[int] = None) -> str:
    if expires_minutes is None:
        expires_minutes = (
            settings.RESET_TOKEN_EXPIRE_MINUTES if purpose == RESET_PURPOSE else settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
    payload = {
        "sub": user_id,
        "role": role,
        "purpose": purpose,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, purpose: str = ACCESS_PURPOSE) -> dict:
    """
    Decode and validate a token issued by ``create_token``.

    Raises a 401 when the signature is bad, the token expired or it was
    issued for a different purpose.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        detail = "Token has expired" if "expired" in str(e).lower() else "Invalid token"
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if payload.get("purpose") != purpose or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> TokenUser:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_token(credentials.credentials)
    return TokenUser(id=payload["sub"], role=payload.get("role", "user"))


def require_roles(*roles: str) -> Callable[..., TokenUser]:
    """
    Dependency factory restricting a route to the given roles.

    Usage:
        @router.get("/cart")
        def show_cart(user: TokenUser = Depends(require_roles("user", "admin"))):
            ...
    """
    def checker(user: TokenUser = Depends(get_current_user)) -> TokenUser:
        if user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return user

    return checker
