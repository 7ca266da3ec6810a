import os
import pathlib
import sys
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

import pytest
from fastapi import FastAPI, Request
from sqlalchemy.orm import Session, sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
os.environ.setdefault("RATE_LIMIT", "10000/minute")

from app.agents.repository import InMemoryAgentRepository
from app.agents.service import AgentInstanceRegistry
from app.app_logging import init_logging
from app.conversations.orchestrator import Orchestrator
from app.conversations.repository import InMemoryConversationRepository
from app.core.config import OrchestrationSettings
from app.core.errors import AgentCoreError
from app.employees import EmployeeRecord, InMemoryEmployeeDirectory
from app.feedback.analytics import InsightsService
from app.models import Base, Company, Employee
from app.models.session import get_engine
from app.routers.errors import to_http_exception
from app.security import create_access_token, reset_jwt_settings_cache


class FakeClock:
    """Deterministic, manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def employee_record(
    company_id: uuid.UUID,
    full_name: str,
    department: str | None = "Engineering",
    *,
    role: str = "employee",
    is_active: bool = True,
    employee_id: uuid.UUID | None = None,
) -> EmployeeRecord:
    slug = full_name.lower().replace(" ", ".")
    return EmployeeRecord(
        id=employee_id or uuid.uuid4(),
        company_id=company_id,
        full_name=full_name,
        email=f"{slug}@example.com",
        department=department,
        role=role,
        is_active=is_active,
    )


@dataclass
class InMemoryStack:
    """In-memory repositories for one company sharing a single backing store."""

    company_id: uuid.UUID
    directory: InMemoryEmployeeDirectory
    clock: FakeClock = field(default_factory=FakeClock)
    settings: OrchestrationSettings = field(default_factory=OrchestrationSettings)
    shared: dict = field(default_factory=dict)

    def agents(self) -> InMemoryAgentRepository:
        return InMemoryAgentRepository(self.company_id, shared=self.shared)

    def conversations(self) -> InMemoryConversationRepository:
        return InMemoryConversationRepository(self.company_id, shared=self.shared)

    def registry(self) -> AgentInstanceRegistry:
        return AgentInstanceRegistry(
            self.agents(),
            self.directory,
            conversations=self.conversations(),
            settings=self.settings,
            clock=self.clock,
        )

    def orchestrator(self, **kwargs) -> Orchestrator:
        kwargs.setdefault("settings", self.settings)
        kwargs.setdefault("clock", self.clock)
        return Orchestrator(self.agents(), self.conversations(), self.directory, **kwargs)

    def insights(self) -> InsightsService:
        return InsightsService(
            self.agents(),
            self.conversations(),
            self.directory,
            top_n=self.settings.top_tags,
            clock=self.clock,
        )


@pytest.fixture
def make_stack() -> Callable[..., InMemoryStack]:
    def _make(
        employees: Iterable[EmployeeRecord] = (),
        *,
        company_id: uuid.UUID | None = None,
        shared: dict | None = None,
        **kwargs,
    ) -> InMemoryStack:
        employees = list(employees)
        if company_id is None:
            company_id = employees[0].company_id if employees else uuid.uuid4()
        directory = InMemoryEmployeeDirectory(company_id, employees)
        stack = InMemoryStack(company_id=company_id, directory=directory, **kwargs)
        if shared is not None:
            stack.shared = shared
        return stack

    return _make


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app


# ---------------------------------------------------------------------------
# Company auth backed by SQLite

_DEMO_PEOPLE = (
    ("employee", "Sarah Chen", "Engineering", "employee"),
    ("peer", "David Kim", "Engineering", "employee"),
    ("sales", "Mike Johnson", "Sales", "employee"),
    ("admin", "Lena Novak", "People", "admin"),
)


@dataclass
class AuthContext:
    engine: object
    session_factory: sessionmaker[Session]
    company_id: uuid.UUID
    users: dict[str, uuid.UUID]
    tokens: dict[str, str]
    records: dict[str, EmployeeRecord]
    company_tokens: dict[uuid.UUID, dict[str, str]] = field(default_factory=dict)

    def token(self, role: str, company_id: uuid.UUID | None = None) -> str:
        if company_id is None or company_id == self.company_id:
            return self.tokens[role]
        return self.company_tokens[company_id][role]

    def header(self, role: str, company_id: uuid.UUID | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token(role, company_id)}"}

    def deactivate(self, role: str) -> None:
        with self.session_factory.begin() as session:
            session.get(Employee, self.users[role]).is_active = False

    def create_company(self, name: str) -> uuid.UUID:
        """Provision another company with an employee and an admin."""

        slug = name.lower().replace(" ", "-")
        with self.session_factory.begin() as session:
            company = Company(name=name)
            session.add(company)
            session.flush()
            tokens: dict[str, str] = {}
            for role in ("employee", "admin"):
                employee = Employee(
                    company_id=company.id,
                    full_name=f"{name} {role.title()}",
                    email=f"{role}@{slug}.example",
                    department="Engineering",
                    role=role,
                )
                session.add(employee)
                session.flush()
                tokens[role], _ = create_access_token(employee)
            company_id = company.id
        self.company_tokens[company_id] = tokens
        return company_id


@pytest.fixture
def company_auth(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> AuthContext:
    db_path = tmp_path_factory.mktemp("company-auth") / "auth.db"
    db_url = f"sqlite+pysqlite:///{db_path}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("COMPANY_TOKEN_SECRET", "super-secret-key")
    monkeypatch.setenv("COMPANY_TOKEN_AUDIENCE", "pulse")
    monkeypatch.setenv("COMPANY_TOKEN_ISSUER", "auth.pulse")
    monkeypatch.setenv("COMPANY_TOKEN_ALGORITHM", "HS256")
    reset_jwt_settings_cache()

    import app.security.auth as security_auth

    monkeypatch.setattr(security_auth, "_SESSION_FACTORY", None)

    engine = get_engine(db_url)
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    users: dict[str, uuid.UUID] = {}
    tokens: dict[str, str] = {}
    records: dict[str, EmployeeRecord] = {}
    with session_factory.begin() as session:
        company = Company(name="Acme")
        session.add(company)
        session.flush()
        for key, name, department, role in _DEMO_PEOPLE:
            employee = Employee(
                company_id=company.id,
                full_name=name,
                email=f"{key}@acme.example",
                department=department,
                role=role,
            )
            session.add(employee)
            session.flush()
            users[key] = employee.id
            tokens[key], _ = create_access_token(employee)
            records[key] = EmployeeRecord(
                id=employee.id,
                company_id=company.id,
                full_name=name,
                email=employee.email,
                department=department,
                role=role,
            )
        company_id = company.id

    context = AuthContext(
        engine=engine,
        session_factory=session_factory,
        company_id=company_id,
        users=users,
        tokens=tokens,
        records=records,
    )
    context.company_tokens[company_id] = tokens

    yield context

    reset_jwt_settings_cache()
    Base.metadata.drop_all(engine)
    engine.dispose()


@contextmanager
def translating_errors():
    """Mirror the routers' translation of core errors into HTTP errors."""

    try:
        yield
    except AgentCoreError as exc:
        raise to_http_exception(exc) from exc


@dataclass
class ApiContext:
    client: object
    auth: AuthContext
    stack: InMemoryStack
    stacks: dict[uuid.UUID, InMemoryStack]

    def header(self, role: str, company_id: uuid.UUID | None = None) -> dict[str, str]:
        return self.auth.header(role, company_id)


@pytest.fixture
def api(monkeypatch: pytest.MonkeyPatch, company_auth: AuthContext, make_stack) -> ApiContext:
    """TestClient whose routers run against in-memory repositories."""

    from fastapi.testclient import TestClient

    import app.main as main
    import app.routers.agents as agents_router
    import app.routers.conversations as conversations_router
    import app.routers.insights as insights_router

    stack = make_stack(company_auth.records.values(), company_id=company_auth.company_id)
    stacks: dict[uuid.UUID, InMemoryStack] = {company_auth.company_id: stack}

    def _stack_for(principal) -> InMemoryStack:
        if principal.company_id not in stacks:
            stacks[principal.company_id] = make_stack(
                company_id=principal.company_id, shared=stack.shared
            )
        return stacks[principal.company_id]

    @contextmanager
    def agents_context(principal):
        current = _stack_for(principal)
        with translating_errors():
            yield agents_router.AgentServices(
                registry=current.registry(), orchestrator=current.orchestrator()
            )

    @contextmanager
    def conversations_context(principal):
        current = _stack_for(principal)
        with translating_errors():
            yield current.orchestrator()

    @contextmanager
    def insights_context(principal):
        current = _stack_for(principal)
        with translating_errors():
            yield current.insights()

    monkeypatch.setattr(agents_router, "_service_context", agents_context)
    monkeypatch.setattr(conversations_router, "_service_context", conversations_context)
    monkeypatch.setattr(insights_router, "_service_context", insights_context)

    return ApiContext(client=TestClient(main.app), auth=company_auth, stack=stack, stacks=stacks)
