"""Service layer managing the company's catalog of agent instances."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from uuid import UUID

import psycopg

from app.core.config import OrchestrationSettings, get_settings
from app.core.errors import NotFoundError, ValidationError
from app.employees import EmployeeDirectory, PostgresEmployeeDirectory

from . import schemas
from .audience import AudienceResolver
from .repository import AgentRepository, PostgresAgentRepository
from .schedule import next_run, resolve_timezone, validate_cadence
from .templates import TemplateCatalog

logger = logging.getLogger(__name__)


def resolve_limits(
    instance: schemas.AgentInstance,
    template: Optional[schemas.AgentTemplate],
    default_max_messages: int,
) -> Tuple[int, bool]:
    """Return ``(max_messages, escalation_enabled)`` for ``instance``.

    Instance overrides win over template defaults, which win over the
    configured global default.
    """

    defaults = template.default_config if template else None
    max_messages = instance.config.max_messages
    if max_messages is None:
        max_messages = defaults.max_messages if defaults else default_max_messages
    escalation_enabled = instance.config.escalation_enabled
    if escalation_enabled is None:
        escalation_enabled = defaults.escalation_enabled if defaults else True
    return max_messages, escalation_enabled


class AgentInstanceRegistry:
    """High-level operations over agent instances for one company."""

    def __init__(
        self,
        repository: AgentRepository,
        directory: EmployeeDirectory,
        *,
        conversations: Optional[Any] = None,
        catalog: Optional[TemplateCatalog] = None,
        settings: Optional[OrchestrationSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._resolver = AudienceResolver(directory)
        self._conversations = conversations
        self._catalog = catalog or TemplateCatalog()
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def catalog(self) -> TemplateCatalog:
        return self._catalog

    def list_templates(self) -> schemas.AgentTemplateList:
        items = self._catalog.list()
        return schemas.AgentTemplateList(items=items, total=len(items))

    def create(
        self, payload: schemas.AgentInstanceCreate, created_by: Optional[UUID] = None
    ) -> schemas.AgentInstanceDetail:
        template = self._catalog.find(payload.agent_id)
        if template is None:
            raise ValidationError(f"Unknown agent template '{payload.agent_id}'", field="agent_id")
        name = (payload.name or "").strip()
        if not name:
            raise ValidationError("name must not be empty", field="name")
        config = schemas.decode_instance_config(payload.config)
        if payload.schedule is None:
            raise ValidationError("schedule is required", field="schedule")
        cadence = validate_cadence(payload.schedule.cadence)
        tz_name = payload.schedule.timezone or self._settings.default_timezone
        resolve_timezone(tz_name)

        instance = self._repository.create_instance(
            template.id, name, config, created_by, status="active"
        )
        targets = self._resolver.resolve(config)
        self._repository.replace_targets(instance.id, targets)
        self._repository.upsert_schedule(
            instance.id,
            cadence=cadence,
            timezone_name=tz_name,
            next_run_at=next_run(cadence, self._clock(), tz_name),
        )
        logger.info(
            "Created agent instance %s (%s) for company %s with %d targets",
            instance.id,
            template.id,
            self._repository.company_id,
            len(targets),
        )
        return self.get(instance.id)

    def set_status(self, instance_id: UUID, status: str) -> schemas.AgentInstance:
        if status not in schemas.INSTANCE_STATUSES:
            raise ValidationError(
                f"Invalid status '{status}'; expected one of {', '.join(schemas.INSTANCE_STATUSES)}",
                field="status",
            )
        instance = self._repository.update_instance(instance_id, status=status)
        logger.info("Agent instance %s is now %s", instance_id, status)
        return instance

    def update_config(
        self, instance_id: UUID, config: Mapping[str, Any]
    ) -> schemas.AgentInstanceDetail:
        self._require(instance_id)
        decoded = schemas.decode_instance_config(config)
        self._repository.update_instance(instance_id, config=decoded)
        self._repository.replace_targets(instance_id, self._resolver.resolve(decoded))
        return self.get(instance_id)

    def list(self) -> schemas.AgentInstanceList:
        stats = self._stats()
        items = [
            schemas.AgentInstanceSummary(
                **instance.model_dump(),
                template=self._catalog.find(instance.agent_id),
                schedule=self._repository.get_schedule(instance.id),
                stats=self._with_participation(
                    stats, instance.id, self._repository.list_targets(instance.id)
                ),
            )
            for instance in self._repository.list_instances()
        ]
        return schemas.AgentInstanceList(items=items, total=len(items))

    def get(self, instance_id: UUID) -> schemas.AgentInstanceDetail:
        instance = self._require(instance_id)
        targets = self._repository.list_targets(instance_id)
        return schemas.AgentInstanceDetail(
            **instance.model_dump(),
            template=self._catalog.find(instance.agent_id),
            schedule=self._repository.get_schedule(instance_id),
            stats=self._with_participation(self._stats(), instance_id, targets),
            target_employee_ids=targets,
        )

    def _require(self, instance_id: UUID) -> schemas.AgentInstance:
        instance = self._repository.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"Agent instance {instance_id} not found")
        return instance

    def _stats(self) -> Dict[UUID, schemas.InstanceStats]:
        if self._conversations is None:
            return {}
        return self._conversations.instance_stats()

    @staticmethod
    def _with_participation(
        stats: Dict[UUID, schemas.InstanceStats], instance_id: UUID, targets: List[UUID]
    ) -> schemas.InstanceStats:
        entry = stats.get(instance_id, schemas.InstanceStats())
        if not targets:
            return entry
        return entry.model_copy(
            update={"participation_rate": round(entry.conversations / len(targets), 2)}
        )


def create_postgres_registry(
    conn: psycopg.Connection, company_id: UUID | str
) -> AgentInstanceRegistry:
    from app.conversations.repository import PostgresConversationRepository

    return AgentInstanceRegistry(
        PostgresAgentRepository(conn, company_id),
        PostgresEmployeeDirectory(conn, company_id),
        conversations=PostgresConversationRepository(conn, company_id),
    )


__all__ = ["AgentInstanceRegistry", "create_postgres_registry", "resolve_limits"]
