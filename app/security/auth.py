"""JWT-backed principal resolution for FastAPI routers."""

from __future__ import annotations

import uuid
from collections.abc import Iterator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session, sessionmaker

from app.core.principal import Principal
from app.models import Employee
from app.models.session import get_sessionmaker

from .tokens import TokenClaims, TokenConfigurationError, TokenValidationError, decode_access_token

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}

_SESSION_FACTORY: sessionmaker[Session] | None = None


def _get_session_factory() -> sessionmaker[Session]:
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = get_sessionmaker()
    return _SESSION_FACTORY


def get_db_session() -> Iterator[Session]:
    """Yield a SQLAlchemy session for request-scoped dependencies."""

    session = _get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def _bearer_credentials(request: Request) -> str:
    authorization = request.headers.get("Authorization")
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
            headers=_BEARER_CHALLENGE,
        )
    scheme, _, credentials = authorization.partition(" ")
    if not credentials.strip() or scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
            headers=_BEARER_CHALLENGE,
        )
    return credentials.strip()


async def get_current_token_payload(request: Request) -> TokenClaims:
    """Decode and validate the bearer token from ``request``.

    Invalid tokens map to 401; a misconfigured deployment maps to 500.
    """

    credentials = _bearer_credentials(request)
    try:
        return decode_access_token(credentials)
    except TokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
    except TokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc), headers=_BEARER_CHALLENGE
        ) from exc


async def get_principal(
    payload: TokenClaims = Depends(get_current_token_payload),
    session: Session = Depends(get_db_session),
) -> Principal:
    """Resolve the calling :class:`Principal` from the token and directory.

    The role stored on the employee record wins over the token claim so a
    demoted admin loses access before their token expires.
    """

    user_id = uuid.UUID(payload["user_id"])
    company_id = uuid.UUID(payload["company_id"])

    employee = session.get(Employee, user_id)
    if employee is None or not employee.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Employee is inactive or no longer exists.",
        )

    if employee.company_id != company_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token company mismatch.",
        )

    return Principal(user_id=employee.id, company_id=employee.company_id, role=employee.role)


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Dependency ensuring the caller holds an HR admin role."""

    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions. Admin access required.",
        )
    return principal


__all__ = [
    "get_current_token_payload",
    "get_db_session",
    "get_principal",
    "require_admin",
]
