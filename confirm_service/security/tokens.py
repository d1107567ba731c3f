"""Access and refresh credentials handed out at login."""

from __future__ import annotations

import hashlib
import secrets
import time
from typing import Any

import jwt

from ..config import Settings, get_settings

DEFAULT_SCOPES = ["account:read", "account:write"]


def issue_access_token(
    *, subject: str, scopes: list[str] | None = None, settings: Settings | None = None
) -> tuple[str, int]:
    """Return an HS256 JWT for ``subject`` and its lifetime in seconds."""
    settings = settings or get_settings()
    now = int(time.time())
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "sub": subject,
        "scopes": scopes or DEFAULT_SCOPES,
        "iat": now,
        "exp": now + settings.jwt_ttl_seconds,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256"), settings.jwt_ttl_seconds


def generate_refresh_token() -> tuple[str, str]:
    """Mint an opaque refresh token; only the returned hash is stored."""
    token = secrets.token_urlsafe(48)
    return token, hash_refresh_token(token)


def hash_refresh_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
