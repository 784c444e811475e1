"""Verification of access tokens issued by the hosted auth provider.

The provider signs tokens with a shared HS256 secret; ``sub`` is the user id
and ``aud`` is ``authenticated`` for signed-in users. Summit never issues or
refreshes tokens itself.
"""

from typing import Any

from jose import JWTError, jwt

from app.config import settings
from app.core.exceptions import AuthenticationError


def verify_token(token: str) -> dict[str, Any]:
    """Verify and decode a provider access token."""
    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
        )
    except JWTError as e:
        raise AuthenticationError(f"Token validation failed: {str(e)}")

    if not payload.get("sub"):
        raise AuthenticationError("Token has no subject")
    return payload


def create_access_token(user_id: str, email: str, expires_at: int) -> str:
    """Sign a token the way the auth provider does (scripts and tests)."""
    return jwt.encode(
        {"sub": user_id, "email": email, "aud": settings.auth_jwt_audience, "exp": expires_at},
        settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
    )
