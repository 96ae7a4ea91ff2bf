"""Bearer token helpers.

Tokens are issued by the identity provider that fronts this service; the core
only needs to read the subject and role claims. ``create_access_token`` exists
for tooling and tests that have to act on behalf of a user.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import jwt

from app.core.config import get_settings


def create_access_token(
    subject: str, expires_delta: timedelta | None = None, **extra: Any
) -> str:
    """Create a signed JWT access token."""
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)
    expire = datetime.now(UTC) + expires_delta
    claims: dict[str, Any] = {"sub": subject, "exp": expire}
    claims.update(extra)
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode a JWT token, raising JWTError on failure."""
    settings = get_settings()
    return jwt.decode(
        token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
    )
