"""Read-only company employee directory."""

from .directory import (
    EmployeeDirectory,
    EmployeeRecord,
    InMemoryEmployeeDirectory,
    PostgresEmployeeDirectory,
)

__all__ = [
    "EmployeeDirectory",
    "EmployeeRecord",
    "InMemoryEmployeeDirectory",
    "PostgresEmployeeDirectory",
]
