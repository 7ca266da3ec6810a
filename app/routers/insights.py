"""Admin insights dashboard API router."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from ..agents.repository import PostgresAgentRepository
from ..conversations.repository import PostgresConversationRepository
from ..core.config import get_settings
from ..core.db import connect_for_company
from ..core.errors import AgentCoreError
from ..core.principal import Principal
from ..employees import PostgresEmployeeDirectory
from ..feedback.analytics import DEFAULT_PERIOD, CompanyInsights, InsightsService
from ..security.auth import require_admin
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/agents", tags=["insights"])


@contextmanager
def _service_context(principal: Principal) -> Iterator[InsightsService]:
    try:
        conn = connect_for_company(principal.company_id)
    except Exception as exc:  # pragma: no cover - requires a live database
        logger.exception("Could not open a database connection")
        raise HTTPException(status_code=500, detail="Database unavailable") from exc
    service = InsightsService(
        PostgresAgentRepository(conn, principal.company_id),
        PostgresConversationRepository(conn, principal.company_id),
        PostgresEmployeeDirectory(conn, principal.company_id),
        top_n=get_settings().top_tags,
    )
    try:
        yield service
        conn.commit()
    except AgentCoreError as exc:
        conn.rollback()
        raise to_http_exception(exc) from exc
    except HTTPException:
        conn.rollback()
        raise
    except Exception as exc:  # pragma: no cover - defensive
        conn.rollback()
        logger.exception("Unexpected error in insights API")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    finally:
        conn.close()


@router.get("/insights", response_model=CompanyInsights)
def get_insights(
    period: str = Query(DEFAULT_PERIOD),
    agent_instance_id: UUID | None = Query(None),
    principal: Principal = Depends(require_admin),
) -> CompanyInsights:
    with _service_context(principal) as svc:
        return svc.insights(period, agent_instance_id=agent_instance_id)
