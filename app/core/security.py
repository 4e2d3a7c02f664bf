"""
Security utilities for authentication

JWT token creation and verification. Authenticated callers get their own
rate-limit tier and a diamond balance stored on their account record.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from app.core.config import settings

TIERS = ("anonymous", "free", "pro", "premium")


@dataclass(frozen=True)
class AuthResult:
    """Outcome of verifying an Authorization header"""

    valid: bool
    user_id: Optional[str] = None
    tier: str = "anonymous"
    error: Optional[str] = None


ANONYMOUS = AuthResult(valid=False)


def create_access_token(
    user_id: str,
    tier: str = "free",
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create JWT access token

    Args:
        user_id: Subject of the token
        tier: Subscription tier claim
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=1))
    payload = {
        "sub": str(user_id),
        "tier": tier,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict]:
    """
    Decode and validate JWT token

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def verify_authorization(header: Optional[str]) -> AuthResult:
    """
    Verify a `Bearer <jwt>` Authorization header.

    A missing header is not an error: the caller is simply anonymous.
    """
    if not header:
        return ANONYMOUS
    if not header.startswith("Bearer "):
        return AuthResult(valid=False, error="Missing or invalid Authorization header")

    payload = decode_token(header[len("Bearer "):].strip())
    if payload is None or not payload.get("sub"):
        return AuthResult(valid=False, error="Could not validate credentials")

    tier = payload.get("tier") or "free"
    if tier not in TIERS or tier == "anonymous":
        tier = "free"
    return AuthResult(valid=True, user_id=str(payload["sub"]), tier=tier)
