"""Employee-facing conversation API router."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from ..conversations import schemas
from ..conversations.orchestrator import (
    DEFAULT_PAGE_SIZE,
    Orchestrator,
    create_postgres_orchestrator,
)
from ..core.db import connect_for_company
from ..core.errors import AgentCoreError
from ..core.principal import Principal
from ..security.auth import get_principal
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@contextmanager
def _service_context(principal: Principal) -> Iterator[Orchestrator]:
    try:
        conn = connect_for_company(principal.company_id)
    except Exception as exc:  # pragma: no cover - requires a live database
        logger.exception("Could not open a database connection")
        raise HTTPException(status_code=500, detail="Database unavailable") from exc
    try:
        yield create_postgres_orchestrator(conn, principal.company_id)
        conn.commit()
    except AgentCoreError as exc:
        conn.rollback()
        raise to_http_exception(exc) from exc
    except HTTPException:
        conn.rollback()
        raise
    except Exception as exc:  # pragma: no cover - defensive
        conn.rollback()
        logger.exception("Unexpected error in conversations API")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    finally:
        conn.close()


@router.get("", response_model=schemas.ConversationList)
def list_conversations(
    view: str = Query("employee"),
    principal: Principal = Depends(get_principal),
) -> schemas.ConversationList:
    with _service_context(principal) as svc:
        return svc.list_conversations(principal, view=view)


@router.get("/{conversation_id}/messages", response_model=schemas.MessagePage)
def list_messages(
    conversation_id: UUID,
    cursor: datetime | None = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    principal: Principal = Depends(get_principal),
) -> schemas.MessagePage:
    with _service_context(principal) as svc:
        return svc.get_messages(conversation_id, principal, cursor=cursor, limit=limit)


@router.post("/{conversation_id}/messages", response_model=schemas.ReplyResult)
def send_message(
    conversation_id: UUID,
    payload: schemas.MessageCreate,
    principal: Principal = Depends(get_principal),
) -> schemas.ReplyResult:
    with _service_context(principal) as svc:
        return svc.handle_employee_reply(conversation_id, payload.content, principal.user_id)


@router.post("/{conversation_id}/read", response_model=schemas.ReadReceipt)
def mark_read(
    conversation_id: UUID,
    principal: Principal = Depends(get_principal),
) -> schemas.ReadReceipt:
    with _service_context(principal) as svc:
        return svc.mark_read(conversation_id, principal)
