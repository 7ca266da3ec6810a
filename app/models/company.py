"""Company directory SQLAlchemy models.

These mirror the DDL in ``app/migrations/001_create_agent_core_tables.py``.
An employee's ``id`` is the user id that appears as ``participant_user_id`` on
conversations.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import List

from sqlalchemy import DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.principal import ADMIN_ROLES

from . import Base


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


class Company(Base):
    """A customer company; every agent record is scoped to one."""

    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    employees: Mapped[List["Employee"]] = relationship(
        back_populates="company",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Employee(Base):
    """An employee (and platform user) belonging to a company.

    Attributes:
        id: User identifier, also used as conversation participant id.
        company_id: Owning company.
        department: Free-form department name matched exactly by audiences.
        role: Membership role; owner, admin and hr_manager are administrators.
        is_active: Inactive employees are never targeted by agents.
    """

    __tablename__ = "employees"
    __table_args__ = (
        Index("ix_employees_company_id", "company_id"),
        Index("ix_employees_company_department", "company_id", "department"),
        Index("ix_employees_email_unique", "email", unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    full_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    department: Mapped[str | None] = mapped_column(String(length=128), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="employee",
        server_default=text("'employee'"),
    )
    is_active: Mapped[bool] = mapped_column(
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    company: Mapped[Company] = relationship(back_populates="employees")

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


__all__ = ["ADMIN_ROLES", "Company", "Employee"]
