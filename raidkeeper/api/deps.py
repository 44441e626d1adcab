"""
raidkeeper.api.deps — FastAPI dependency injection
==================================================

Dashboard tokens are scoped to guilds: the ``guilds`` claim lists the
guild IDs (as strings) whose quota ledgers the holder may edit. The bot
mints them with :func:`issue_admin_token` from ``/dashboard-token``.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from raidkeeper.database.engine import create_db_engine

JWT_ALGORITHM = "HS256"
TOKEN_TTL = timedelta(hours=12)

_MIN_SECRET_LENGTH = 32
_PLACEHOLDERS = frozenset({"change-me", "changeme", "secret", "raidkeeper"})


@lru_cache(maxsize=1)
def signing_secret() -> str:
    """``JWT_SECRET`` from the environment, read once.

    Raises RuntimeError when it is unset, a placeholder, or shorter than
    32 characters. The API lifespan calls this so a bad secret stops
    startup instead of the first admin request.
    """
    secret = os.getenv("JWT_SECRET", "").strip()
    if not secret:
        raise RuntimeError("JWT_SECRET is not set; dashboard tokens cannot be signed.")
    if secret.lower() in _PLACEHOLDERS:
        raise RuntimeError("JWT_SECRET is still a placeholder value.")
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET must be at least {_MIN_SECRET_LENGTH} characters (got {len(secret)})."
        )
    return secret


def issue_admin_token(
    user_id: int,
    guild_ids: list[int],
    *,
    ttl: timedelta = TOKEN_TTL,
    now: datetime | None = None,
) -> str:
    """Sign a dashboard token letting *user_id* edit quotas in *guild_ids*."""
    issued = now or datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "guilds": [str(g) for g in guild_ids],
        "iat": issued,
        "exp": issued + ttl,
    }
    return jwt.encode(claims, signing_secret(), algorithm=JWT_ALGORITHM)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


def require_guild_admin(
    guild_id: int,
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Decode the bearer token for a ``/guilds/{guild_id}/…`` edit.

    401 when the token is missing, malformed, expired or signed with another
    secret; 403 when it does not list *guild_id*.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        claims = jwt.decode(token, signing_secret(), algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if str(guild_id) not in claims.get("guilds", []):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not an admin of this guild")
    return claims
