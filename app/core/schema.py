"""Run the Alembic migrations in ``app/migrations`` over a psycopg connection.

Deployments with an Alembic environment can ignore this module. The seed
script and the database tests call :func:`ensure_schema`, which swaps each
migration's ``op`` for :class:`MigrationOps` and records applied revisions
in ``app_python_migrations``.
"""

from __future__ import annotations

import importlib
import logging
from pathlib import Path
from types import ModuleType
from typing import Any, Sequence

import psycopg
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"

_TRACKING_TABLE = """
    CREATE TABLE IF NOT EXISTS app_python_migrations (
        id TEXT PRIMARY KEY,
        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
"""


class MigrationOps:
    """The part of Alembic's ``op`` API used by the agent core migrations."""

    def __init__(self, conn: psycopg.Connection):
        self._conn = conn
        # One MetaData per run so foreign keys resolve against earlier tables.
        self._metadata = sa.MetaData()
        self._dialect = postgresql.dialect()
        self._quote = self._dialect.identifier_preparer.quote

    def create_table(self, name: str, *columns: Any, **kwargs: Any) -> None:
        table = sa.Table(name, self._metadata, *columns, **kwargs)
        self.execute(str(sa.schema.CreateTable(table).compile(dialect=self._dialect)))

    def drop_table(self, name: str) -> None:
        table = sa.Table(name, self._metadata)
        self.execute(str(sa.schema.DropTable(table, if_exists=True).compile(dialect=self._dialect)))
        self._metadata.remove(table)

    def create_index(
        self,
        name: str,
        table_name: str,
        columns: Sequence[str],
        *,
        unique: bool = False,
        postgresql_where: Any | None = None,
    ) -> None:
        statement = "CREATE {unique}INDEX IF NOT EXISTS {name} ON {table} ({columns})".format(
            unique="UNIQUE " if unique else "",
            name=self._quote(name),
            table=self._quote(table_name),
            columns=", ".join(self._quote(column) for column in columns),
        )
        if postgresql_where is not None:
            where = postgresql_where.compile(
                dialect=self._dialect, compile_kwargs={"literal_binds": True}
            )
            statement += f" WHERE {where}"
        self.execute(statement)

    def execute(self, statement: str) -> None:
        with self._conn.cursor() as cur:
            cur.execute(statement)


def _applied_revisions(conn: psycopg.Connection) -> set[str]:
    with conn.cursor() as cur:
        cur.execute(_TRACKING_TABLE)
        cur.execute("SELECT id FROM app_python_migrations")
        applied = {row[0] for row in cur.fetchall()}
    conn.commit()
    return applied


def pending_migrations(conn: psycopg.Connection, migrations_dir: Path | None = None) -> list[str]:
    """Revision ids found on disk but not yet applied, in filename order."""

    directory = migrations_dir or MIGRATIONS_DIR
    applied = _applied_revisions(conn)
    return [
        path.stem
        for path in sorted(directory.glob("[0-9][0-9][0-9]_*.py"))
        if path.is_file() and path.stem not in applied
    ]


def _apply(conn: psycopg.Connection, module: ModuleType, revision: str) -> None:
    previous = getattr(module, "op", None)
    module.op = MigrationOps(conn)
    try:
        module.upgrade()
        with conn.cursor() as cur:
            cur.execute(
                "INSERT INTO app_python_migrations (id) VALUES (%s) ON CONFLICT (id) DO NOTHING",
                (revision,),
            )
        conn.commit()
    except Exception:
        conn.rollback()
        logger.exception("Migration %s failed", revision)
        raise
    finally:
        module.op = previous


def ensure_schema(conn: psycopg.Connection, migrations_dir: Path | None = None) -> list[str]:
    """Apply pending migrations, each in its own transaction.

    Returns the revision ids applied by this call; repeated calls are no-ops.
    """

    applied: list[str] = []
    for revision in pending_migrations(conn, migrations_dir):
        module = importlib.import_module(f"app.migrations.{revision}")
        _apply(conn, module, revision)
        applied.append(revision)
        logger.info("Applied migration %s", revision)
    return applied


__all__ = ["MIGRATIONS_DIR", "MigrationOps", "ensure_schema", "pending_migrations"]
