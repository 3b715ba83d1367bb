"""
hackx.api.deps — FastAPI dependency injection
==============================================

Bearer JWTs issued by the platform's auth service are the identity
collaborator's hand-off.  They are decoded here, once, into a
:class:`~hackx.engine.identity.Principal`; nothing below the API layer ever
sees a token.

Claims read: ``sub`` (user id), ``username``, ``reputation_score``,
``role`` / ``is_admin`` and ``capabilities`` (list of strings).  The
``admin`` role grants every governance capability.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from hackx.config import HackxConfig, load_config
from hackx.database.engine import create_db_engine
from hackx.engine.identity import ADMIN_CAPABILITIES, Principal

_WEAK_SECRETS = frozenset({
    "hackx-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_config() -> HackxConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    statement_timeout_ms = 5000
    try:
        statement_timeout_ms = get_config().db_statement_timeout_ms
    except FileNotFoundError:
        pass
    return create_db_engine(statement_timeout_ms=statement_timeout_ms)


def principal_from_claims(payload: dict) -> Principal:
    """Map verified token claims onto the core's trusted identity."""
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token subject")

    capabilities = {str(c) for c in payload.get("capabilities") or []}
    if payload.get("is_admin") or payload.get("role") == "admin":
        capabilities |= ADMIN_CAPABILITIES

    try:
        reputation = int(payload.get("reputation_score") or 0)
    except (TypeError, ValueError):
        reputation = 0

    return Principal(
        user_id=user_id,
        username=str(payload.get("username") or "Unknown"),
        reputation_score=reputation,
        capabilities=frozenset(capabilities),
    )


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> Principal:
    """Validate the bearer JWT and return the caller. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return principal_from_claims(payload)


def require_capability(capability: str):
    """Build a dependency that requires *capability* on the caller."""

    def _dependency(user: Principal = Depends(get_current_user)) -> Principal:
        if not user.has(capability):
            raise HTTPException(status.HTTP_403_FORBIDDEN, "Insufficient permissions")
        return user

    return _dependency
