"""FastAPI dependencies for authentication, idempotency keys and collaborators."""

from datetime import datetime, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header
from jwt import PyJWTError

from .config import settings
from .exceptions import AuthenticationError, AuthorizationError, InvalidInputError

ADMIN_ROLE = "admin"


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> dict:
    """
    Authentication dependency that validates Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        dict: User information from validated token

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format") from None

    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    try:
        payload = jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=["HS256"]
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError(detail="Token has expired") from None
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {e}") from e

    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError(detail="Invalid token payload")

    return {
        "user_id": user_id,
        "email": payload.get("email"),
        "roles": payload.get("roles", []),
    }


async def get_optional_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Optional[dict]:
    """Like ``get_current_user`` but anonymous requests resolve to ``None``."""
    if not authorization:
        return None
    return await get_current_user(authorization)


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    """Authorization dependency for catalog administration endpoints."""
    if ADMIN_ROLE not in user["roles"]:
        raise AuthorizationError(required_permissions=[ADMIN_ROLE])
    return user


def issue_token(user_id: str, roles: list[str], ttl_seconds: int = 3600) -> str:
    """Mint an HS256 bearer token; used by operators and tests."""
    now = int(datetime.now(timezone.utc).timestamp())
    return jwt.encode(
        {"sub": user_id, "roles": roles, "iat": now, "exp": now + ttl_seconds},
        settings.bearer_token_secret,
        algorithm="HS256",
    )


async def get_idempotency_key(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")
) -> Optional[str]:
    """
    Extract and validate an optional idempotency key from request headers.

    Raises:
        InvalidInputError: If the key is longer than 255 characters
    """
    if idempotency_key is None:
        return None

    idempotency_key = idempotency_key.strip()
    if not idempotency_key or len(idempotency_key) > 255:
        raise InvalidInputError(
            detail="Idempotency key must be between 1 and 255 characters",
            field="Idempotency-Key",
        )
    return idempotency_key


RequiredAdmin = Depends(require_admin)
OptionalUser = Depends(get_optional_user)
IdempotencyKey = Depends(get_idempotency_key)
