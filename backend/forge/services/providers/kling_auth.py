"""Kling request signing.

Kling authenticates every call with a short-lived HS256 JWT issued from the
access key / secret key pair. Tokens are signed fresh for each outbound call
and never cached.
"""

from __future__ import annotations

import logging
import time

import jwt

from forge.config import Settings, get_settings
from forge.services.providers.kling_errors import ConfigurationError

logger = logging.getLogger(__name__)

TOKEN_TTL_SECONDS = 1800
CLOCK_SKEW_SECONDS = 5


def sign(
    issuer: str,
    secret: str,
    now: float | None = None,
    *,
    ttl: int = TOKEN_TTL_SECONDS,
    skew: int = CLOCK_SKEW_SECONDS,
) -> str:
    """Return a compact signed credential valid from ``now - skew`` to ``now + ttl``."""
    if not issuer or not secret:
        raise ConfigurationError(
            "KLING_ACCESS_KEY or KLING_SECRET_KEY is not configured in environment variables"
        )

    issued = int(now if now is not None else time.time())
    claims = {
        "iss": issuer,
        "exp": issued + ttl,
        "nbf": issued - skew,
    }
    return jwt.encode(claims, secret, algorithm="HS256", headers={"typ": "JWT"})


def sign_from_settings(settings: Settings | None = None, now: float | None = None) -> str:
    """Sign a credential from the configured access key / secret key."""
    settings = settings or get_settings()
    return sign(
        settings.KLING_ACCESS_KEY,
        settings.KLING_SECRET_KEY,
        now,
        ttl=settings.KLING_TOKEN_TTL,
        skew=settings.KLING_CLOCK_SKEW,
    )


def auth_headers(settings: Settings | None = None) -> dict[str, str]:
    """Headers for one Kling call, carrying a freshly signed bearer token."""
    return {
        "Authorization": f"Bearer {sign_from_settings(settings)}",
        "Content-Type": "application/json",
    }
