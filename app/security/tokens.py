"""Company access tokens: issuing and validation.

Real sign-in lives outside this service. Tokens minted here are used by the
seed script, local tooling and tests; every API request presents one and is
validated with :func:`decode_access_token`.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import os
import uuid
from functools import lru_cache
from typing import Any, TypedDict, cast

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from app.models import Employee


class TokenConfigurationError(RuntimeError):
    """Raised when the COMPANY_TOKEN_* environment is incomplete."""


class TokenValidationError(ValueError):
    """Raised when a presented token cannot be trusted."""


class _RequiredClaims(TypedDict):
    company_id: str
    user_id: str


class TokenClaims(_RequiredClaims, total=False):
    """Decoded access token payload."""

    aud: str | list[str]
    email: str
    exp: int
    iat: int
    iss: str
    name: str
    role: str
    type: str


@dataclasses.dataclass(frozen=True)
class JWTSettings:
    """Runtime configuration for issuing and validating access tokens."""

    secret: str
    issuer: str
    audience: str
    algorithm: str = "HS256"
    access_token_ttl_seconds: int = 900  # 15 minutes


def _require_env(name: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        raise TokenConfigurationError(
            f"Environment variable '{name}' must be set for company token validation."
        )
    return value


@lru_cache(maxsize=1)
def get_jwt_settings() -> JWTSettings:
    """Load settings from the environment."""

    return JWTSettings(
        secret=_require_env("COMPANY_TOKEN_SECRET"),
        issuer=_require_env("COMPANY_TOKEN_ISSUER"),
        audience=_require_env("COMPANY_TOKEN_AUDIENCE"),
        algorithm=os.getenv("COMPANY_TOKEN_ALGORITHM", "HS256").strip() or "HS256",
        access_token_ttl_seconds=int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", "900")),
    )


def reset_jwt_settings_cache() -> None:
    """Clear cached JWT settings; useful in tests when env vars change."""

    get_jwt_settings.cache_clear()


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def create_access_token(
    employee: Employee, *, settings: JWTSettings | None = None
) -> tuple[str, dt.datetime]:
    """Issue a signed JWT access token for ``employee``."""

    settings = settings or get_jwt_settings()
    now = _utcnow()
    expires_at = now + dt.timedelta(seconds=settings.access_token_ttl_seconds)
    payload: dict[str, Any] = {
        "company_id": str(employee.company_id),
        "user_id": str(employee.id),
        "email": employee.email,
        "name": employee.full_name,
        "role": employee.role,
        "iss": settings.issuer,
        "aud": settings.audience,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
        "type": "access",
    }
    token = jwt.encode(payload, settings.secret, algorithm=settings.algorithm)
    return str(token), expires_at


def decode_access_token(token: str, *, settings: JWTSettings | None = None) -> TokenClaims:
    """Validate ``token`` and return its claims.

    Signature, expiry, audience and issuer are checked, and both identifiers
    must be UUIDs. Refresh or other non-access tokens are refused.

    Raises:
        TokenConfigurationError: If the COMPANY_TOKEN_* settings are missing.
        TokenValidationError: If the token fails any check.
    """

    settings = settings or get_jwt_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret,
            algorithms=[settings.algorithm],
            audience=settings.audience,
            issuer=settings.issuer,
            options={"require": ["exp", "aud", "iss"]},
        )
    except ExpiredSignatureError as exc:
        raise TokenValidationError("Company token has expired.") from exc
    except InvalidTokenError as exc:
        raise TokenValidationError("Company token is invalid.") from exc

    for claim in ("company_id", "user_id"):
        try:
            uuid.UUID(str(payload[claim]))
        except KeyError as exc:
            raise TokenValidationError(
                "Company token payload must include 'company_id' and 'user_id'."
            ) from exc
        except ValueError as exc:
            raise TokenValidationError(f"Claim '{claim}' is not a valid identifier.") from exc

    if payload.get("type", "access") != "access":
        raise TokenValidationError("Company token must be an access token.")
    return cast(TokenClaims, payload)


__all__ = [
    "JWTSettings",
    "TokenClaims",
    "TokenConfigurationError",
    "TokenValidationError",
    "create_access_token",
    "decode_access_token",
    "get_jwt_settings",
    "reset_jwt_settings_cache",
]
