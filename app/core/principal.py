"""The authenticated caller as seen by the orchestration core."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

ADMIN_ROLES = frozenset({"owner", "admin", "hr_manager"})


@dataclass(frozen=True)
class Principal:
    user_id: UUID
    company_id: UUID
    role: str = "employee"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


__all__ = ["ADMIN_ROLES", "Principal"]
