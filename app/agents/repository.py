"""Persistence for agent instances, targets, schedules and runs."""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol
from uuid import UUID, uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from app.core.db import require_company_id
from app.core.errors import NotFoundError

from . import schemas
from .schedule import is_due


class AgentRepository(Protocol):
    """Company-scoped persistence used by the registry and orchestrator."""

    @property
    def company_id(self) -> UUID: ...

    def create_instance(
        self,
        agent_id: str,
        name: str,
        config: schemas.InstanceConfig,
        created_by: Optional[UUID],
        status: str = "active",
    ) -> schemas.AgentInstance: ...

    def get_instance(self, instance_id: UUID) -> Optional[schemas.AgentInstance]: ...

    def list_instances(self) -> List[schemas.AgentInstance]: ...

    def update_instance(
        self,
        instance_id: UUID,
        *,
        status: Optional[str] = None,
        config: Optional[schemas.InstanceConfig] = None,
    ) -> schemas.AgentInstance: ...

    def replace_targets(self, instance_id: UUID, employee_ids: Iterable[UUID]) -> None: ...

    def list_targets(self, instance_id: UUID) -> List[UUID]: ...

    def upsert_schedule(
        self,
        instance_id: UUID,
        *,
        cadence: str,
        timezone_name: str,
        next_run_at: datetime,
        last_run_at: Optional[datetime] = None,
        is_active: bool = True,
    ) -> schemas.AgentSchedule: ...

    def get_schedule(self, instance_id: UUID) -> Optional[schemas.AgentSchedule]: ...

    def list_due_schedules(self, now: datetime) -> List[schemas.AgentSchedule]: ...

    def record_run(self, payload: schemas.AgentRunCreate) -> schemas.AgentRun: ...

    def list_runs(
        self,
        limit: int = 10,
        since: Optional[datetime] = None,
        agent_instance_id: Optional[UUID] = None,
    ) -> List[schemas.AgentRun]: ...

    def count_active_instances(self) -> int: ...


class PostgresAgentRepository:
    """PostgreSQL implementation of :class:`AgentRepository`."""

    _INSTANCE_COLUMNS = "id, company_id, agent_id, created_by, name, config, status, created_at, updated_at"
    _SCHEDULE_COLUMNS = "id, company_id, agent_instance_id, cadence, timezone, next_run_at, last_run_at, is_active"

    def __init__(self, conn: psycopg.Connection, company_id: UUID | str) -> None:
        self._conn = conn
        self._company_id = require_company_id(company_id)

    # Utility -----------------------------------------------------------------
    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    @property
    def company_id(self) -> UUID:
        return self._company_id

    # Instances ---------------------------------------------------------------
    def create_instance(
        self,
        agent_id: str,
        name: str,
        config: schemas.InstanceConfig,
        created_by: Optional[UUID],
        status: str = "active",
    ) -> schemas.AgentInstance:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO agent_instances (company_id, agent_id, created_by, name, config, status)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING {self._INSTANCE_COLUMNS}
                """,
                (self._company_id, agent_id, created_by, name, Jsonb(config.to_storage()), status),
            )
            row = cur.fetchone()
        return self._row_to_instance(row)

    def get_instance(self, instance_id: UUID) -> Optional[schemas.AgentInstance]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {self._INSTANCE_COLUMNS} FROM agent_instances WHERE company_id = %s AND id = %s",
                (self._company_id, instance_id),
            )
            row = cur.fetchone()
        return self._row_to_instance(row) if row else None

    def list_instances(self) -> List[schemas.AgentInstance]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {self._INSTANCE_COLUMNS} FROM agent_instances
                WHERE company_id = %s
                ORDER BY created_at DESC
                """,
                (self._company_id,),
            )
            rows = cur.fetchall()
        return [self._row_to_instance(row) for row in rows]

    def update_instance(
        self,
        instance_id: UUID,
        *,
        status: Optional[str] = None,
        config: Optional[schemas.InstanceConfig] = None,
    ) -> schemas.AgentInstance:
        fields: List[str] = []
        values: List[Any] = []
        if status is not None:
            fields.append("status = %s")
            values.append(status)
        if config is not None:
            fields.append("config = %s")
            values.append(Jsonb(config.to_storage()))
        if not fields:
            instance = self.get_instance(instance_id)
            if instance is None:
                raise NotFoundError(f"Agent instance {instance_id} not found")
            return instance
        values.extend((self._company_id, instance_id))
        query = (
            "UPDATE agent_instances SET "
            f"{', '.join(fields)}, updated_at = now() "
            f"WHERE company_id = %s AND id = %s RETURNING {self._INSTANCE_COLUMNS}"
        )
        with self._cursor() as cur:
            cur.execute(query, values)
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Agent instance {instance_id} not found")
        return self._row_to_instance(row)

    # Targets -----------------------------------------------------------------
    def replace_targets(self, instance_id: UUID, employee_ids: Iterable[UUID]) -> None:
        ids = sorted(set(employee_ids), key=str)
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM agent_targets WHERE company_id = %s AND agent_instance_id = %s",
                (self._company_id, instance_id),
            )
            if ids:
                cur.executemany(
                    """
                    INSERT INTO agent_targets (company_id, agent_instance_id, employee_id)
                    VALUES (%s, %s, %s)
                    """,
                    [(self._company_id, instance_id, employee_id) for employee_id in ids],
                )

    def list_targets(self, instance_id: UUID) -> List[UUID]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT employee_id FROM agent_targets
                WHERE company_id = %s AND agent_instance_id = %s
                ORDER BY employee_id
                """,
                (self._company_id, instance_id),
            )
            rows = cur.fetchall()
        return [row["employee_id"] for row in rows]

    # Schedules ---------------------------------------------------------------
    def upsert_schedule(
        self,
        instance_id: UUID,
        *,
        cadence: str,
        timezone_name: str,
        next_run_at: datetime,
        last_run_at: Optional[datetime] = None,
        is_active: bool = True,
    ) -> schemas.AgentSchedule:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO agent_schedules
                    (company_id, agent_instance_id, cadence, timezone, next_run_at, last_run_at, is_active)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (agent_instance_id) DO UPDATE
                SET cadence = EXCLUDED.cadence,
                    timezone = EXCLUDED.timezone,
                    next_run_at = EXCLUDED.next_run_at,
                    last_run_at = COALESCE(EXCLUDED.last_run_at, agent_schedules.last_run_at),
                    is_active = EXCLUDED.is_active
                RETURNING {self._SCHEDULE_COLUMNS}
                """,
                (
                    self._company_id,
                    instance_id,
                    cadence,
                    timezone_name,
                    next_run_at,
                    last_run_at,
                    is_active,
                ),
            )
            row = cur.fetchone()
        return schemas.AgentSchedule(**row)

    def get_schedule(self, instance_id: UUID) -> Optional[schemas.AgentSchedule]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {self._SCHEDULE_COLUMNS} FROM agent_schedules
                WHERE company_id = %s AND agent_instance_id = %s
                """,
                (self._company_id, instance_id),
            )
            row = cur.fetchone()
        return schemas.AgentSchedule(**row) if row else None

    def list_due_schedules(self, now: datetime) -> List[schemas.AgentSchedule]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {self._SCHEDULE_COLUMNS} FROM agent_schedules
                WHERE company_id = %s AND is_active AND next_run_at <= %s
                ORDER BY next_run_at
                """,
                (self._company_id, now),
            )
            rows = cur.fetchall()
        return [schemas.AgentSchedule(**row) for row in rows]

    # Runs --------------------------------------------------------------------
    def record_run(self, payload: schemas.AgentRunCreate) -> schemas.AgentRun:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO agent_runs
                    (company_id, agent_instance_id, run_type, status, started_at, finished_at,
                     messages_sent, conversations_touched)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id, company_id, agent_instance_id, run_type, status, started_at,
                          finished_at, messages_sent, conversations_touched
                """,
                (
                    self._company_id,
                    payload.agent_instance_id,
                    payload.run_type,
                    payload.status,
                    payload.started_at,
                    payload.finished_at,
                    payload.messages_sent,
                    payload.conversations_touched,
                ),
            )
            row = cur.fetchone()
        return schemas.AgentRun(**row)

    def list_runs(
        self,
        limit: int = 10,
        since: Optional[datetime] = None,
        agent_instance_id: Optional[UUID] = None,
    ) -> List[schemas.AgentRun]:
        query = """
            SELECT r.id, r.company_id, r.agent_instance_id, r.run_type, r.status, r.started_at,
                   r.finished_at, r.messages_sent, r.conversations_touched, i.name AS agent_name
            FROM agent_runs r
            JOIN agent_instances i ON i.id = r.agent_instance_id AND i.company_id = r.company_id
            WHERE r.company_id = %s
        """
        params: List[Any] = [self._company_id]
        if since is not None:
            query += " AND r.started_at >= %s"
            params.append(since)
        if agent_instance_id is not None:
            query += " AND r.agent_instance_id = %s"
            params.append(agent_instance_id)
        query += " ORDER BY r.started_at DESC LIMIT %s"
        params.append(limit)
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [schemas.AgentRun(**row) for row in rows]

    def count_active_instances(self) -> int:
        with self._cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) AS total FROM agent_instances WHERE company_id = %s AND status = 'active'",
                (self._company_id,),
            )
            row = cur.fetchone() or {"total": 0}
        return int(row["total"])

    # Helpers -----------------------------------------------------------------
    def _row_to_instance(self, row: Dict[str, Any]) -> schemas.AgentInstance:
        data = dict(row)
        data["config"] = schemas.decode_instance_config(row.get("config") or {})
        return schemas.AgentInstance(**data)


# ---------------------------------------------------------------------------
# In-memory repository (useful for testing and sandbox environments)


class InMemoryAgentRepository:
    """Process-local store; several company-scoped views may share one backing dict."""

    def __init__(self, company_id: UUID | str, *, shared: Optional[Dict[str, Any]] = None) -> None:
        self._company_id = require_company_id(company_id)
        state = shared if shared is not None else {}
        self._instances: Dict[UUID, schemas.AgentInstance] = state.setdefault("instances", {})
        self._targets: Dict[UUID, List[UUID]] = state.setdefault("targets", {})
        self._schedules: Dict[UUID, schemas.AgentSchedule] = state.setdefault("schedules", {})
        self._runs: List[schemas.AgentRun] = state.setdefault("runs", [])
        self._lock: threading.RLock = state.setdefault("lock", threading.RLock())

    @property
    def company_id(self) -> UUID:
        return self._company_id

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def create_instance(
        self,
        agent_id: str,
        name: str,
        config: schemas.InstanceConfig,
        created_by: Optional[UUID],
        status: str = "active",
    ) -> schemas.AgentInstance:
        now = self._now()
        instance = schemas.AgentInstance(
            id=uuid4(),
            company_id=self._company_id,
            agent_id=agent_id,
            created_by=created_by,
            name=name,
            config=config,
            status=status,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._instances[instance.id] = instance
        return instance.model_copy()

    def get_instance(self, instance_id: UUID) -> Optional[schemas.AgentInstance]:
        instance = self._instances.get(instance_id)
        if instance is None or instance.company_id != self._company_id:
            return None
        return instance.model_copy()

    def list_instances(self) -> List[schemas.AgentInstance]:
        items = [i.model_copy() for i in self._instances.values() if i.company_id == self._company_id]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items

    def update_instance(
        self,
        instance_id: UUID,
        *,
        status: Optional[str] = None,
        config: Optional[schemas.InstanceConfig] = None,
    ) -> schemas.AgentInstance:
        with self._lock:
            instance = self.get_instance(instance_id)
            if instance is None:
                raise NotFoundError(f"Agent instance {instance_id} not found")
            if status is not None:
                instance.status = status
            if config is not None:
                instance.config = config
            instance.updated_at = self._now()
            self._instances[instance_id] = instance
        return instance.model_copy()

    def replace_targets(self, instance_id: UUID, employee_ids: Iterable[UUID]) -> None:
        with self._lock:
            self._targets[instance_id] = sorted(set(employee_ids), key=str)

    def list_targets(self, instance_id: UUID) -> List[UUID]:
        if self.get_instance(instance_id) is None:
            return []
        return list(self._targets.get(instance_id, []))

    def upsert_schedule(
        self,
        instance_id: UUID,
        *,
        cadence: str,
        timezone_name: str,
        next_run_at: datetime,
        last_run_at: Optional[datetime] = None,
        is_active: bool = True,
    ) -> schemas.AgentSchedule:
        with self._lock:
            existing = self._schedules.get(instance_id)
            schedule = schemas.AgentSchedule(
                id=existing.id if existing else uuid4(),
                company_id=self._company_id,
                agent_instance_id=instance_id,
                cadence=cadence,
                timezone=timezone_name,
                next_run_at=next_run_at,
                last_run_at=last_run_at or (existing.last_run_at if existing else None),
                is_active=is_active,
            )
            self._schedules[instance_id] = schedule
        return schedule.model_copy()

    def get_schedule(self, instance_id: UUID) -> Optional[schemas.AgentSchedule]:
        schedule = self._schedules.get(instance_id)
        if schedule is None or schedule.company_id != self._company_id:
            return None
        return schedule.model_copy()

    def list_due_schedules(self, now: datetime) -> List[schemas.AgentSchedule]:
        due = [
            s.model_copy()
            for s in self._schedules.values()
            if s.company_id == self._company_id and is_due(s, now)
        ]
        due.sort(key=lambda s: s.next_run_at)
        return due

    def record_run(self, payload: schemas.AgentRunCreate) -> schemas.AgentRun:
        instance = self.get_instance(payload.agent_instance_id)
        run = schemas.AgentRun(
            id=uuid4(),
            company_id=self._company_id,
            agent_name=instance.name if instance else None,
            **payload.model_dump(),
        )
        with self._lock:
            self._runs.append(run)
        return run.model_copy()

    def list_runs(
        self,
        limit: int = 10,
        since: Optional[datetime] = None,
        agent_instance_id: Optional[UUID] = None,
    ) -> List[schemas.AgentRun]:
        runs = [
            r.model_copy()
            for r in self._runs
            if r.company_id == self._company_id
            and (since is None or r.started_at >= since)
            and (agent_instance_id is None or r.agent_instance_id == agent_instance_id)
        ]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs[:limit]

    def count_active_instances(self) -> int:
        return sum(1 for i in self.list_instances() if i.status == "active")
