"""Caller identity from the session JWT.

The token is issued elsewhere (login service); here we only verify it and
read the ``username`` claim. Accepted from the ``auth-token`` cookie or an
``Authorization: Bearer`` header.
"""

from __future__ import annotations

import logging

import jwt
from fastapi import HTTPException, Request, status

from config import settings

_LOGGER = logging.getLogger(__name__)


def _token_from(request: Request) -> str | None:
    token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


def verify_token(token: str | None) -> dict | None:
    if not token or not settings.JWT_SECRET:
        return None
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.InvalidTokenError as exc:
        _LOGGER.info("Rejected auth token: %s", exc)
        return None


async def current_username(request: Request) -> str:
    """FastAPI dependency: the authenticated owner, or 401."""
    claims = verify_token(_token_from(request))
    username = (claims or {}).get("username")
    if not username:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    return username
