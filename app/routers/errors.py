"""Translate orchestration errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..core.errors import (
    AgentCoreError,
    ConflictError,
    EscalatedError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)


def to_http_exception(exc: AgentCoreError) -> HTTPException:
    """Map an :class:`AgentCoreError` onto the matching :class:`HTTPException`."""

    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "field": exc.field},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, EscalatedError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "state": exc.state},
        )
    if isinstance(exc, InvalidStateError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "state": exc.state},
        )
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report body/query validation failures as 400 with the offending field."""

    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "message": first.get("msg", "Invalid request"),
                "field": loc[-1] if loc else None,
            }
        },
    )


__all__ = ["request_validation_handler", "to_http_exception"]
