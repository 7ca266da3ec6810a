"""Agent instance management API router."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from ..agents import schemas
from ..agents.service import AgentInstanceRegistry, create_postgres_registry
from ..agents.templates import TemplateCatalog
from ..conversations.orchestrator import Orchestrator, create_postgres_orchestrator
from ..conversations.schemas import RunResult
from ..core.db import connect_for_company
from ..core.errors import AgentCoreError
from ..core.principal import Principal
from ..security.auth import get_principal, require_admin
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agents", tags=["agents"])


@dataclass
class AgentServices:
    registry: AgentInstanceRegistry
    orchestrator: Orchestrator


@contextmanager
def _service_context(principal: Principal) -> Iterator[AgentServices]:
    try:
        conn = connect_for_company(principal.company_id)
    except Exception as exc:  # pragma: no cover - requires a live database
        logger.exception("Could not open a database connection")
        raise HTTPException(status_code=500, detail="Database unavailable") from exc
    services = AgentServices(
        registry=create_postgres_registry(conn, principal.company_id),
        orchestrator=create_postgres_orchestrator(conn, principal.company_id),
    )
    try:
        yield services
        conn.commit()
    except AgentCoreError as exc:
        conn.rollback()
        raise to_http_exception(exc) from exc
    except HTTPException:
        conn.rollback()
        raise
    except Exception as exc:  # pragma: no cover - defensive
        conn.rollback()
        logger.exception("Unexpected error in agents API")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    finally:
        conn.close()


@router.get("/templates", response_model=schemas.AgentTemplateList)
def list_templates(
    principal: Principal = Depends(get_principal),
) -> schemas.AgentTemplateList:
    items = TemplateCatalog().list()
    return schemas.AgentTemplateList(items=items, total=len(items))


@router.get("/instances", response_model=schemas.AgentInstanceList)
def list_instances(
    principal: Principal = Depends(require_admin),
) -> schemas.AgentInstanceList:
    with _service_context(principal) as svc:
        return svc.registry.list()


@router.post(
    "/instances",
    response_model=schemas.AgentInstanceDetail,
    status_code=status.HTTP_201_CREATED,
)
def create_instance(
    payload: schemas.AgentInstanceCreate,
    principal: Principal = Depends(require_admin),
) -> schemas.AgentInstanceDetail:
    with _service_context(principal) as svc:
        return svc.registry.create(payload, created_by=principal.user_id)


@router.get("/instances/{instance_id}", response_model=schemas.AgentInstanceDetail)
def get_instance(
    instance_id: UUID,
    principal: Principal = Depends(require_admin),
) -> schemas.AgentInstanceDetail:
    with _service_context(principal) as svc:
        return svc.registry.get(instance_id)


@router.patch("/instances/{instance_id}/status", response_model=schemas.AgentInstance)
def set_instance_status(
    instance_id: UUID,
    payload: schemas.AgentInstanceStatusUpdate,
    principal: Principal = Depends(require_admin),
) -> schemas.AgentInstance:
    with _service_context(principal) as svc:
        return svc.registry.set_status(instance_id, payload.status)


@router.put("/instances/{instance_id}/config", response_model=schemas.AgentInstanceDetail)
def update_instance_config(
    instance_id: UUID,
    payload: schemas.AgentInstanceConfigUpdate,
    principal: Principal = Depends(require_admin),
) -> schemas.AgentInstanceDetail:
    with _service_context(principal) as svc:
        return svc.registry.update_config(instance_id, payload.config)


@router.post("/instances/{instance_id}/run", response_model=RunResult)
def run_instance(
    instance_id: UUID,
    principal: Principal = Depends(require_admin),
) -> RunResult:
    with _service_context(principal) as svc:
        return svc.orchestrator.run(instance_id, run_type="manual")


@router.post("/run-due", response_model=schemas.AgentRunList)
def run_due(principal: Principal = Depends(require_admin)) -> schemas.AgentRunList:
    """Scheduler hook: run every instance whose schedule is due."""

    with _service_context(principal) as svc:
        runs = svc.orchestrator.run_due()
    return schemas.AgentRunList(items=runs, total=len(runs))
