"""Bearer token authentication.

The identity provider issues HS256-signed JWTs whose ``sub`` claim is an opaque
user id. This module verifies those tokens and resolves the caller into a
``CurrentUser`` for the route handlers.

Design principles:
- Pure verification logic (``decode_access_token``) separate from FastAPI glue
- Dependency Injection: used via FastAPI Depends() for loose coupling
- Configuration-driven: secret, audience and admin ids come from env vars
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Any

import jwt
from fastapi import Depends, Header

from buyer_leads.core.config import settings
from buyer_leads.core.errors import AuthenticationAppError
from buyer_leads.core.logging import hash_for_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller."""

    id: str
    is_admin: bool = False


def parse_id_list(ids_string: str | None) -> set[str]:
    """Parse a comma-separated list of ids into a set.

    Args:
        ids_string: Comma-separated string of ids, or None.

    Returns:
        Set of trimmed, non-empty ids.

    Examples:
        >>> sorted(parse_id_list("u1, u2 ,u3"))
        ['u1', 'u2', 'u3']
        >>> parse_id_list(None)
        set()
    """
    if not ids_string:
        return set()

    return {item.strip() for item in ids_string.split(",") if item.strip()}


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify a bearer token and return its claims.

    Args:
        token: Raw JWT string.

    Returns:
        Decoded claims.

    Raises:
        AuthenticationAppError: If the token is expired, malformed, badly signed
            or has no subject.
    """
    options = {"require": ["sub", "exp"], "verify_aud": bool(settings.auth.jwt_audience)}
    try:
        claims = jwt.decode(
            token,
            settings.auth.jwt_secret,
            algorithms=[settings.auth.jwt_algorithm],
            audience=settings.auth.jwt_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationAppError(
            code="token_expired",
            message="Session expired. Sign in again.",
        ) from exc
    except jwt.InvalidTokenError as exc:
        logger.warning(
            "auth.invalid_token",
            extra={"reason": type(exc).__name__},
        )
        raise AuthenticationAppError(
            code="invalid_token",
            message="Invalid session token",
        ) from exc

    if not str(claims.get("sub") or "").strip():
        raise AuthenticationAppError(code="invalid_token", message="Invalid session token")
    return claims


def is_admin_claims(claims: dict[str, Any]) -> bool:
    """Decide whether the token holder has the admin role.

    A user is an admin when their id is listed in ``AUTH_ADMIN_USER_IDS`` or the
    provider marked them with ``app_metadata.role == "admin"``.
    """
    if str(claims["sub"]) in parse_id_list(settings.auth.admin_user_ids):
        return True
    app_metadata = claims.get("app_metadata")
    return isinstance(app_metadata, dict) and app_metadata.get("role") == "admin"


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> CurrentUser:
    """FastAPI dependency resolving the caller from the Authorization header.

    Usage:
        @router.get("/protected")
        async def protected(user: CurrentUserDep):
            return {"user": user.id}

    Raises:
        AuthenticationAppError: 401 when the header is missing or the token is invalid.
    """
    token = _extract_bearer(authorization)
    if token is None:
        logger.info("auth.missing_token")
        raise AuthenticationAppError(
            code="unauthorized",
            message="Unauthorized",
            details={"hint": "Provide an 'Authorization: Bearer <token>' header"},
        )

    claims = decode_access_token(token)
    user = CurrentUser(id=str(claims["sub"]), is_admin=is_admin_claims(claims))
    logger.debug(
        "auth.success",
        extra={"user_hash": hash_for_log(user.id), "is_admin": user.is_admin},
    )
    return user


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
