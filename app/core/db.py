"""Database helpers for company-scoped psycopg connections."""

from __future__ import annotations

import logging
import os
from uuid import UUID

import psycopg

logger = logging.getLogger(__name__)


def get_database_url() -> str:
    """Return ``DATABASE_URL`` or raise ``RuntimeError`` when unset."""

    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")
    return url


def apply_company_settings(conn: psycopg.Connection, company_id: str | UUID) -> None:
    """Ensure ``app.company_id`` is configured for the provided connection.

    Uses a session-level ``set_config`` so row level security policies keyed on
    the setting keep working across transaction boundaries.
    """

    company_value = str(company_id or "")
    if not company_value:
        raise RuntimeError("company_id is required for company-scoped operations")

    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT set_config('app.company_id', %s, false)",
                (company_value,),
            )
    except Exception:  # pragma: no cover - defensive logging
        logger.exception("Failed to apply company settings to connection")
        raise


def require_company_id(company_id: str | UUID | None) -> UUID:
    """Return ``company_id`` as a :class:`UUID` or raise ``RuntimeError``."""

    if company_id is None or company_id == "":
        raise RuntimeError("Company context missing")
    if isinstance(company_id, UUID):
        return company_id
    try:
        return UUID(str(company_id))
    except ValueError as exc:
        raise RuntimeError("Invalid company identifier") from exc


def connect_for_company(company_id: str | UUID) -> psycopg.Connection:
    """Open a connection to ``DATABASE_URL`` scoped to ``company_id``.

    The caller owns the connection and is responsible for commit/close.
    """

    conn = psycopg.connect(get_database_url())
    try:
        apply_company_settings(conn, company_id)
    except Exception:
        conn.close()
        raise
    return conn
