"""Employee directory lookups used by audience resolution and reporting."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row
from pydantic import BaseModel

from app.core.db import require_company_id


class EmployeeRecord(BaseModel):
    id: UUID
    company_id: UUID
    full_name: str
    email: str
    department: Optional[str] = None
    job_title: Optional[str] = None
    role: str = "employee"
    is_active: bool = True


class EmployeeDirectory(Protocol):
    """Company-scoped employee lookups."""

    @property
    def company_id(self) -> UUID: ...

    def list_employees(self, *, active_only: bool = True) -> List[EmployeeRecord]: ...

    def get_employees(self, employee_ids: Iterable[UUID]) -> Dict[UUID, EmployeeRecord]: ...

    def count_active(self) -> int: ...


class PostgresEmployeeDirectory:
    """PostgreSQL implementation of :class:`EmployeeDirectory`."""

    _COLUMNS = "id, company_id, full_name, email, department, job_title, role, is_active"

    def __init__(self, conn: psycopg.Connection, company_id: UUID | str) -> None:
        self._conn = conn
        self._company_id = require_company_id(company_id)

    @property
    def company_id(self) -> UUID:
        return self._company_id

    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def list_employees(self, *, active_only: bool = True) -> List[EmployeeRecord]:
        query = f"SELECT {self._COLUMNS} FROM employees WHERE company_id = %s"
        if active_only:
            query += " AND is_active"
        query += " ORDER BY full_name, id"
        with self._cursor() as cur:
            cur.execute(query, (self._company_id,))
            rows = cur.fetchall()
        return [EmployeeRecord(**row) for row in rows]

    def get_employees(self, employee_ids: Iterable[UUID]) -> Dict[UUID, EmployeeRecord]:
        ids = list(dict.fromkeys(employee_ids))
        if not ids:
            return {}
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {self._COLUMNS} FROM employees WHERE company_id = %s AND id = ANY(%s)",
                (self._company_id, ids),
            )
            rows = cur.fetchall()
        return {row["id"]: EmployeeRecord(**row) for row in rows}

    def count_active(self) -> int:
        with self._cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) AS total FROM employees WHERE company_id = %s AND is_active",
                (self._company_id,),
            )
            row = cur.fetchone() or {"total": 0}
        return int(row["total"])


# ---------------------------------------------------------------------------
# In-memory directory (tests, sandboxes and the demo fixture)


class InMemoryEmployeeDirectory:
    def __init__(
        self,
        company_id: UUID | str,
        employees: Iterable[EmployeeRecord] = (),
    ) -> None:
        self._company_id = require_company_id(company_id)
        self._employees: Dict[UUID, EmployeeRecord] = {}
        for employee in employees:
            self.add(employee)

    @property
    def company_id(self) -> UUID:
        return self._company_id

    def add(self, employee: EmployeeRecord) -> EmployeeRecord:
        self._employees[employee.id] = employee
        return employee

    def deactivate(self, employee_id: UUID) -> None:
        employee = self._employees[employee_id]
        self._employees[employee_id] = employee.model_copy(update={"is_active": False})

    def _scoped(self) -> List[EmployeeRecord]:
        return [e for e in self._employees.values() if e.company_id == self._company_id]

    def list_employees(self, *, active_only: bool = True) -> List[EmployeeRecord]:
        employees = [e for e in self._scoped() if e.is_active or not active_only]
        employees.sort(key=lambda e: (e.full_name, str(e.id)))
        return employees

    def get_employees(self, employee_ids: Iterable[UUID]) -> Dict[UUID, EmployeeRecord]:
        wanted = set(employee_ids)
        return {e.id: e for e in self._scoped() if e.id in wanted}

    def count_active(self) -> int:
        return sum(1 for e in self._scoped() if e.is_active)
