"""Security utilities exposed for convenience."""

from .auth import get_current_token_payload, get_principal, require_admin
from .tokens import (
    JWTSettings,
    TokenClaims,
    TokenConfigurationError,
    TokenValidationError,
    create_access_token,
    decode_access_token,
    get_jwt_settings,
    reset_jwt_settings_cache,
)

__all__ = [
    "JWTSettings",
    "TokenClaims",
    "TokenConfigurationError",
    "TokenValidationError",
    "create_access_token",
    "decode_access_token",
    "get_current_token_payload",
    "get_jwt_settings",
    "get_principal",
    "require_admin",
    "reset_jwt_settings_cache",
]
