"""
Authentication service for the BidHub API.

Issues and verifies the JWT access tokens shared by the REST API and the
Socket.IO handshake.  Account management (sign-up, passwords) lives in the
accounts service; this module only needs to map a token to an active user.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bidhub.core.config import settings
from bidhub.core.exceptions import AuthenticationError
from bidhub.models.user import User


# ---------------------------------------------------------------------------
# JWT token generation
# ---------------------------------------------------------------------------

def create_access_token(
    user_id: uuid.UUID,
    expires_in: Optional[timedelta] = None,
) -> tuple[str, datetime]:
    """Create an access token for ``user_id``.

    Returns:
        Tuple of (token_string, expiration_datetime).
    """
    now = datetime.now(timezone.utc)
    expires_at = now + (
        expires_in or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": str(user_id),
        "type": "access",
        "exp": expires_at,
        "iat": now,
        "jti": str(uuid.uuid4()),
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, expires_at


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If the token has expired.
        jwt.InvalidTokenError: If the token is otherwise invalid.
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )


# ---------------------------------------------------------------------------
# Token -> user
# ---------------------------------------------------------------------------

def user_id_from_token(token: str) -> uuid.UUID:
    """Return the subject of a valid access token.

    Raises:
        AuthenticationError: For expired, malformed or non-access tokens.
    """
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid token") from exc

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type")

    try:
        return uuid.UUID(payload["sub"])
    except (KeyError, ValueError, TypeError) as exc:
        raise AuthenticationError("Invalid token subject") from exc


async def authenticate_token(db: AsyncSession, token: str) -> User:
    """Resolve a bearer token to an active ``User``.

    Raises:
        AuthenticationError: If the token is invalid or the user is missing
            or deactivated.
    """
    user_id = user_id_from_token(token)
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("User account is deactivated")
    return user
