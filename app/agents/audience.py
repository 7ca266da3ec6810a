"""Resolve an instance's audience into concrete employee ids."""

from __future__ import annotations

from ..employees import EmployeeDirectory
from .schemas import (
    AllAudience,
    DepartmentAudience,
    InstanceConfig,
    SpecificAudience,
)


class AudienceResolver:
    """Pure lookup over the employee directory; safe to call on every run."""

    def __init__(self, directory: EmployeeDirectory) -> None:
        self._directory = directory

    def resolve(self, config: InstanceConfig) -> frozenset:
        audience = config.audience
        if isinstance(audience, AllAudience):
            return frozenset(e.id for e in self._directory.list_employees())
        if isinstance(audience, DepartmentAudience):
            # Exact, case-sensitive department match.
            return frozenset(
                e.id
                for e in self._directory.list_employees()
                if e.department == audience.department
            )
        if isinstance(audience, SpecificAudience):
            found = self._directory.get_employees(audience.employee_ids)
            return frozenset(e.id for e in found.values() if e.is_active)
        raise TypeError(f"Unsupported audience {audience!r}")


__all__ = ["AudienceResolver"]
