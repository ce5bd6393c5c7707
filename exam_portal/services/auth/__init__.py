"""Password hashing, JWT issue and verification, and the auth dependencies.

Tokens carry the user's `token_version`; logout bumps it so every token
issued before becomes invalid without a denylist.
"""
from datetime import datetime, timedelta, timezone

from bson.objectid import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from jose import jwt, JWTError
from pydantic import BaseModel

from exam_portal.models.user import User
from exam_portal.utils.base import Forbidden
from exam_portal.utils.config import settings


ACCESS = "access"
REFRESH = "refresh"
CREDENTIALS_ERROR = "Could not validate credentials"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/users/login")


class TokenPair(BaseModel):
    """Pair of JWT tokens used by the client for auth and refresh."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user_id: str
    role: str


def verify_password(plain: str, hashed: str) -> bool:
    """Verify plaintext password against a bcrypt hash."""
    return pwd_context.verify(plain, hashed)


def hash_password(plain: str) -> str:
    """Hash a plaintext password using bcrypt."""
    return pwd_context.hash(plain)


def _encode(user: User, token_type: str, lifetime: timedelta) -> str:
    """Create a signed JWT with subject, token version, role, expiration and type."""
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user.id),
        "tv": user.token_version,
        "typ": token_type,
        "role": user.role,
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_tokens(user: User) -> TokenPair:
    """Create access and refresh token pair for a user."""
    return TokenPair(
        access_token=_encode(user, ACCESS, timedelta(minutes=settings.access_token_expires_minutes)),
        refresh_token=_encode(user, REFRESH, timedelta(days=settings.refresh_token_expires_days)),
        user_id=str(user.id),
        role=user.role,
    )


def decode_token(token: str, expected_type: str) -> tuple[str, str]:
    """Return (user_id, token_version) from a valid token of the expected type."""
    claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    user_id = claims.get("sub")
    token_version = claims.get("tv")
    if user_id is None or token_version is None or claims.get("typ") != expected_type:
        raise JWTError("Unexpected token claims")
    if not ObjectId.is_valid(user_id):
        raise JWTError("Malformed subject")
    return user_id, token_version


def user_for_token(token: str, expected_type: str) -> User | None:
    """The token's user, or None when the token is invalid or was revoked by logout."""
    try:
        user_id, token_version = decode_token(token, expected_type)
    except JWTError:
        return None
    user = User.objects(id=user_id).first()
    if not user or user.token_version != token_version:
        return None
    return user


def get_current_user(token: str = Depends(oauth2_scheme)) -> User:
    """Auth dependency that validates an access token and returns the user."""
    user = user_for_token(token, ACCESS)
    if user is None:
        raise HTTPException(status_code=401, detail=CREDENTIALS_ERROR, headers={"WWW-Authenticate": "Bearer"})
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise Forbidden("Admin access required")
    return current_user
