"""Utility script to bootstrap the database with a demo company and agents."""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from dotenv import load_dotenv
import psycopg
from sqlalchemy import select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from app.agents.schemas import AgentInstanceCreate, AgentInstanceDetail, ScheduleSpec
from app.agents.service import AgentInstanceRegistry, create_postgres_registry
from app.conversations.orchestrator import Orchestrator, create_postgres_orchestrator
from app.core.db import apply_company_settings
from app.core.schema import ensure_schema
from app.models import Company, Employee
from app.models.session import as_sqlalchemy_url, get_sessionmaker
from app.security import create_access_token

logger = logging.getLogger("seed")


@dataclass(frozen=True, slots=True)
class DemoEmployee:
    full_name: str
    email: str
    department: str
    job_title: str
    role: str = "employee"
    is_active: bool = True


DEMO_EMPLOYEES: tuple[DemoEmployee, ...] = (
    DemoEmployee("Sarah Chen", "sarah.chen", "Engineering", "Senior Software Engineer"),
    DemoEmployee("David Kim", "david.kim", "Engineering", "Software Engineer"),
    DemoEmployee("Priya Patel", "priya.patel", "Engineering", "Engineering Manager", role="admin"),
    DemoEmployee("Tom Becker", "tom.becker", "Engineering", "QA Engineer", is_active=False),
    DemoEmployee("Maria Lopez", "maria.lopez", "Product", "Product Manager"),
    DemoEmployee("James Wilson", "james.wilson", "Product", "Product Designer"),
    DemoEmployee("Mike Johnson", "mike.johnson", "Sales", "Account Executive"),
    DemoEmployee("Aisha Bello", "aisha.bello", "Sales", "Sales Manager"),
    DemoEmployee("Lena Novak", "lena.novak", "People", "HR Business Partner", role="hr_manager"),
)

# ``manager_emails`` is resolved into ``target_employee_ids`` at load time.
DEMO_AGENTS: tuple[Mapping[str, Any], ...] = (
    {
        "agent_id": "pulse_check",
        "name": "Engineering Weekly Pulse",
        "config": {
            "tone_preset": "friendly_peer",
            "audience_type": "department",
            "target_department": "Engineering",
        },
        "schedule": {"cadence": "weekly"},
    },
    {
        "agent_id": "pulse_check",
        "name": "Company Monthly Pulse",
        "config": {"tone_preset": "professional_hr", "audience_type": "all"},
        "schedule": {"cadence": "monthly"},
    },
    {
        "agent_id": "manager_coaching",
        "name": "Manager Coaching",
        "config": {"tone_preset": "witty_but_safe", "audience_type": "specific"},
        "manager_emails": ("priya.patel", "aisha.bello"),
        "schedule": {"cadence": "biweekly"},
    },
)


@dataclass(slots=True)
class SeedConfig:
    """Configuration derived from the environment for the seed process."""

    db_url: str
    sqlalchemy_url: str
    company_name: str
    email_domain: str
    admin_name: str
    admin_email: str
    run_agents: bool


def _to_bool(value: str | None) -> bool:
    """Parse a truthy string value into ``bool``."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _safe_url(db_url: str) -> str:
    """Return a version of ``db_url`` with any password redacted."""

    try:
        parsed = make_url(db_url)
    except Exception:  # pragma: no cover - defensive fallback
        return db_url
    if parsed.password is None:
        return db_url
    return parsed.render_as_string(hide_password=True)


def _build_database_url() -> str:
    """Compute the database URL from ``DATABASE_URL`` or ``PG*`` variables."""

    direct = os.getenv("DATABASE_URL")
    if direct:
        return direct

    host = os.getenv("PGHOST")
    port = os.getenv("PGPORT", "5432")
    database = os.getenv("PGDATABASE")
    user = os.getenv("PGUSER")
    password = os.getenv("PGPASSWORD")

    if not all([host, database, user]):
        raise RuntimeError(
            "DATABASE_URL is not configured and PGHOST/PGDATABASE/PGUSER are missing."
        )

    auth = user
    if password:
        auth = f"{user}:{password}"
    return f"postgresql://{auth}@{host}:{port}/{database}"


def _load_config() -> SeedConfig:
    """Load seed configuration from environment variables."""

    db_url = _build_database_url()
    domain = os.getenv("SEED_EMAIL_DOMAIN", "demo.pulse.local").strip().lower()
    return SeedConfig(
        db_url=db_url,
        sqlalchemy_url=as_sqlalchemy_url(db_url),
        company_name=os.getenv("SEED_COMPANY_NAME", "Acme Demo").strip(),
        email_domain=domain,
        admin_name=os.getenv("SEED_ADMIN_NAME", "Demo Admin").strip(),
        admin_email=os.getenv("SEED_ADMIN_EMAIL", f"admin@{domain}").strip().lower(),
        run_agents=_to_bool(os.getenv("SEED_RUN_AGENTS", "true")),
    )


def wait_for_database(max_attempts: int = 10, delay: float = 3.0) -> None:
    """Attempt to establish a database connection, retrying if necessary."""

    db_url = _build_database_url()
    safe_url = _safe_url(db_url)

    for attempt in range(1, max_attempts + 1):
        try:
            with psycopg.connect(db_url, connect_timeout=5) as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1")
        except Exception as exc:  # pragma: no cover - depends on external DB
            logger.info(
                "Database not ready (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            if attempt >= max_attempts:
                raise RuntimeError("Database did not become ready in time") from exc
            time.sleep(delay)
            continue

        logger.info("Database connection established after %d attempt(s): %s", attempt, safe_url)
        return


def _run_schema_migrations(db_url: str) -> None:
    """Execute idempotent schema creation and migrations."""

    with psycopg.connect(db_url) as conn:
        applied = ensure_schema(conn)
    logger.info("Schema ensured successfully (%d migration(s) applied).", len(applied))


def provision_company(
    factory: sessionmaker[Session],
    config: SeedConfig,
    employees: Iterable[DemoEmployee] = DEMO_EMPLOYEES,
) -> tuple[uuid.UUID, dict[str, uuid.UUID]]:
    """Create or reuse the demo company, its admin and its employees.

    Returns the company id and a mapping of email local part to employee id;
    the admin is listed under ``"admin"``.
    """

    ids: dict[str, uuid.UUID] = {}
    with factory() as session:
        company = session.execute(
            select(Company).where(Company.name == config.company_name)
        ).scalar_one_or_none()
        if company is None:
            company = Company(name=config.company_name)
            session.add(company)
            session.flush()
            logger.info("Created company %s (%s)", company.id, company.name)
        else:
            logger.info("Company %s already exists; reusing.", company.name)

        wanted = [
            ("admin", config.admin_email, config.admin_name, None, "HR Administrator", "owner", True)
        ] + [
            (
                demo.email,
                f"{demo.email}@{config.email_domain}",
                demo.full_name,
                demo.department,
                demo.job_title,
                demo.role,
                demo.is_active,
            )
            for demo in employees
        ]
        created = 0
        for key, email, name, department, job_title, role, is_active in wanted:
            employee = session.execute(
                select(Employee).where(Employee.email == email)
            ).scalar_one_or_none()
            if employee is None:
                employee = Employee(
                    company_id=company.id,
                    full_name=name,
                    email=email,
                    department=department,
                    job_title=job_title,
                    role=role,
                    is_active=is_active,
                )
                session.add(employee)
                session.flush()
                created += 1
            ids[key] = employee.id

        session.commit()
        company_id = company.id

    logger.info("Company %s has %d directory entries (%d new)", company_id, len(ids), created)
    return company_id, ids


def load_demo_agents(
    registry: AgentInstanceRegistry,
    employee_ids: Mapping[str, uuid.UUID],
    *,
    orchestrator: Orchestrator | None = None,
    agents: Iterable[Mapping[str, Any]] = DEMO_AGENTS,
) -> list[AgentInstanceDetail]:
    """Create the demo agent instances that do not exist yet.

    When ``orchestrator`` is given each new instance is run once so the demo
    starts with open conversations.
    """

    existing = {item.name for item in registry.list().items}
    created: list[AgentInstanceDetail] = []
    for entry in agents:
        if entry["name"] in existing:
            logger.info("Agent instance %s already exists; skipping.", entry["name"])
            continue
        config = dict(entry["config"])
        if entry.get("manager_emails"):
            config["target_employee_ids"] = [
                str(employee_ids[email]) for email in entry["manager_emails"]
            ]
        payload = AgentInstanceCreate(
            agent_id=entry["agent_id"],
            name=entry["name"],
            config=config,
            schedule=ScheduleSpec(**entry["schedule"]),
        )
        detail = registry.create(payload, created_by=employee_ids.get("admin"))
        created.append(detail)
        if orchestrator is not None:
            result = orchestrator.run(detail.id, run_type="manual")
            logger.info(
                "Ran %s: %d conversation(s) opened", detail.name, len(result.conversations)
            )
    return created


def _load_agents(config: SeedConfig, company_id: uuid.UUID, employee_ids: Mapping[str, uuid.UUID]) -> None:
    with psycopg.connect(config.db_url) as conn:
        apply_company_settings(conn, company_id)
        registry = create_postgres_registry(conn, company_id)
        orchestrator = create_postgres_orchestrator(conn, company_id) if config.run_agents else None
        created = load_demo_agents(registry, employee_ids, orchestrator=orchestrator)
        conn.commit()
    logger.info("Loaded %d new agent instance(s) for company %s", len(created), company_id)


def _report_admin_token(factory: sessionmaker[Session], admin_id: uuid.UUID) -> None:
    """Print a short-lived admin token when token settings are configured."""

    if not os.getenv("COMPANY_TOKEN_SECRET"):
        logger.info("COMPANY_TOKEN_SECRET not set; skipping admin token.")
        return
    with factory() as session:
        admin = session.get(Employee, admin_id)
        token, expires_at = create_access_token(admin)
    logger.info("Admin access token (expires %s): %s", expires_at.isoformat(), token)


async def main() -> None:
    """Entrypoint for the seeding workflow."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    wait_for_database()

    config = _load_config()
    logger.info("Starting seed process using %s", _safe_url(config.db_url))

    os.environ.setdefault("DATABASE_URL", config.db_url)

    await asyncio.to_thread(_run_schema_migrations, config.db_url)

    session_factory = get_sessionmaker(database_url=config.sqlalchemy_url)
    company_id, employee_ids = await asyncio.to_thread(provision_company, session_factory, config)

    logger.info("Company ready: %s", company_id)
    await asyncio.to_thread(_load_agents, config, company_id, employee_ids)
    await asyncio.to_thread(_report_admin_token, session_factory, employee_ids["admin"])

    logger.info("Seed process completed. Company ID: %s", company_id)


if __name__ == "__main__":
    asyncio.run(main())
