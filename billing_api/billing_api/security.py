"""Caller authentication for the frontend-facing billing endpoints.

The web app sends the user's access token issued by the auth provider as
``Authorization: Bearer <jwt>``.  Tokens are HS256-signed with the shared
project secret; ``sub`` is the user id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException

from billing_api.dependencies import SettingsDep

logger = logging.getLogger(__name__)

_JWT_ALGORITHM = "HS256"


class AuthenticationError(Exception):
    """The bearer token is missing, malformed, expired or forged."""


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity extracted from a verified access token."""

    user_id: str
    email: str | None = None


def decode_access_token(token: str, secret: str, audience: str | None = None) -> AuthenticatedUser:
    """Verify *token* and return the caller's identity.

    Raises
    ------
    AuthenticationError
        If the signature, expiry, audience or ``sub`` claim is invalid.
    """
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[_JWT_ALGORITHM],
            audience=audience,
            options={"require": ["exp", "sub"], "verify_aud": audience is not None},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError(f"Invalid token: {exc}") from exc

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise AuthenticationError("Token has no subject")
    email = claims.get("email")
    return AuthenticatedUser(user_id=user_id, email=email if isinstance(email, str) and email else None)


def get_current_user(
    settings: SettingsDep,
    authorization: Annotated[str | None, Header()] = None,
) -> AuthenticatedUser:
    """FastAPI dependency resolving the authenticated caller.

    Answers 503 when the service is deployed without the frontend
    settings, and 401 for a missing or invalid token.
    """
    if not settings.frontend_enabled:
        raise HTTPException(status_code=503, detail="Billing endpoints are not configured")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        return decode_access_token(
            token.strip(),
            settings.auth_jwt_secret.get_secret_value(),
            audience=settings.auth_jwt_audience or None,
        )
    except AuthenticationError as exc:
        logger.info("Rejected access token: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid or expired token") from exc


CurrentUserDep = Annotated[AuthenticatedUser, Depends(get_current_user)]
