"""SQLAlchemy declarative base and company directory models.

The agent orchestration tables are accessed through psycopg repositories; the
company directory (companies and their employees) is mapped here so principal
resolution and the demo seed can work with ORM sessions.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


from .company import Company, Employee


__all__ = [
    "Base",
    "Company",
    "Employee",
]
