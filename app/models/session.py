"""Engine and session factories for the company directory models."""

from __future__ import annotations

import uuid

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from app.core.db import get_database_url


def as_sqlalchemy_url(db_url: str) -> str:
    """Point plain ``postgresql://`` URLs at the psycopg 3 driver."""

    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return db_url


def _install_sqlite_functions(engine: Engine) -> None:
    # The models default ids with gen_random_uuid(); SQLite needs a stand-in.
    @event.listens_for(engine, "connect")
    def _configure(dbapi_connection, _record):  # pragma: no cover - dialect hook
        dbapi_connection.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))
        dbapi_connection.execute("PRAGMA foreign_keys=ON")


def get_engine(database_url: str | None = None, **kwargs: object) -> Engine:
    """Create an engine for ``database_url`` or ``DATABASE_URL``.

    PostgreSQL engines ping pooled connections before use; SQLite engines
    (tests, local tooling) get ``gen_random_uuid`` and foreign keys.
    """

    url = as_sqlalchemy_url(database_url or get_database_url())
    if url.startswith("postgresql"):
        kwargs.setdefault("pool_pre_ping", True)
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        _install_sqlite_functions(engine)
    return engine


def get_sessionmaker(database_url: str | None = None, **kwargs: object) -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(database_url, **kwargs), expire_on_commit=False)


__all__ = ["as_sqlalchemy_url", "get_engine", "get_sessionmaker"]
