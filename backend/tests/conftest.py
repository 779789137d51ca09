"""
Ticketflow - Test Fixtures
==========================

Shared pytest fixtures for all tests.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ticketflow.api.deps import get_git_gateway
from ticketflow.api.main import app
from ticketflow.core.config import Settings
from ticketflow.core.database import Base, enable_sqlite_foreign_keys, get_db
from ticketflow.core.models import Epic, Project, Ticket, TicketStatus
from ticketflow.core.workflow import (
    AgentSessionManager,
    GitGateway,
    GitResult,
    ReviewManager,
    SessionEventLog,
    WorkflowController,
)


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed ids used by the branch naming scenarios
SCENARIO_TICKET_ID = UUID("12345678-9abc-4def-8123-456789abcdef")
SCENARIO_EPIC_ID = UUID("abcdefab-1234-4567-89ab-cdef01234567")


@pytest_asyncio.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test; tables created before, dropped after."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session bound to the per-test engine."""
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


# ==========================================================================
# Clock / Git Doubles
# ==========================================================================

class FakeClock:
    """Deterministic clock that advances one second per reading."""

    def __init__(
        self,
        start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
        step: timedelta = timedelta(seconds=1),
    ):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


class FakeGitGateway(GitGateway):
    """
    In-memory repository.

    Records every checkout and creation; individual branches can be made to
    fail checkout or creation.
    """

    def __init__(self, branches: tuple[str, ...] = ("main",), is_repo: bool = True):
        self.branches = set(branches)
        self.is_repo = is_repo
        self.current: Optional[str] = "main" if "main" in self.branches else None
        self.created: list[str] = []
        self.checked_out: list[str] = []
        self.commands: list[str] = []
        self.fail_checkout: set[str] = set()
        self.fail_create: set[str] = set()
        self.run_results: dict[str, GitResult] = {}

    def run(self, command: str, working_dir: str) -> GitResult:
        self.commands.append(command)
        for prefix, result in self.run_results.items():
            if command.startswith(prefix):
                return result
        return GitResult(success=True, output="", command=command)

    def is_repository(self, working_dir: str) -> bool:
        self.commands.append("git rev-parse --git-dir")
        return self.is_repo

    def branch_exists(self, name: str, working_dir: str) -> bool:
        return name in self.branches

    def checkout(self, name: str, working_dir: str) -> GitResult:
        command = f"git checkout {name}"
        if name in self.fail_checkout:
            return GitResult(
                success=False,
                error="error: Your local changes would be overwritten by checkout",
                command=command,
            )
        if name not in self.branches:
            return GitResult(
                success=False,
                error=f"error: pathspec '{name}' did not match any file(s) known to git",
                command=command,
            )
        self.current = name
        self.checked_out.append(name)
        return GitResult(success=True, command=command)

    def create_branch(self, name: str, working_dir: str) -> GitResult:
        command = f"git checkout -b {name}"
        if name in self.fail_create or name in self.branches:
            return GitResult(
                success=False,
                error=f"fatal: cannot create branch '{name}'",
                command=command,
            )
        self.branches.add(name)
        self.current = name
        self.created.append(name)
        return GitResult(success=True, command=command)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def git() -> FakeGitGateway:
    return FakeGitGateway()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(ENVIRONMENT="test")


# ==========================================================================
# Service Fixtures
# ==========================================================================

@pytest.fixture
def controller(
    db_session: AsyncSession,
    git: FakeGitGateway,
    test_settings: Settings,
    clock: FakeClock,
) -> WorkflowController:
    return WorkflowController(db_session, git, test_settings, clock=clock)


@pytest.fixture
def session_manager(
    db_session: AsyncSession,
    test_settings: Settings,
    clock: FakeClock,
) -> AgentSessionManager:
    return AgentSessionManager(db_session, test_settings, clock=clock)


@pytest.fixture
def event_log(
    db_session: AsyncSession,
    test_settings: Settings,
    clock: FakeClock,
) -> SessionEventLog:
    return SessionEventLog(db_session, test_settings, clock=clock)


@pytest.fixture
def review_manager(db_session: AsyncSession, clock: FakeClock) -> ReviewManager:
    return ReviewManager(db_session, clock=clock)


# ==========================================================================
# Board Fixtures
# ==========================================================================

@pytest_asyncio.fixture
async def project(db_session: AsyncSession, tmp_path) -> Project:
    """Project whose checkout is a temporary directory."""
    project = Project(name="Test Project", path=str(tmp_path))
    db_session.add(project)
    await db_session.commit()
    await db_session.refresh(project)
    return project


async def make_ticket(
    db: AsyncSession,
    project: Project,
    title: str,
    status: TicketStatus = TicketStatus.BACKLOG,
    position: int = 0,
    epic: Optional[Epic] = None,
    ticket_id: Optional[UUID] = None,
    branch_name: Optional[str] = None,
) -> Ticket:
    ticket = Ticket(
        project_id=project.id,
        title=title,
        status=status,
        position=position,
        epic_id=epic.id if epic else None,
        branch_name=branch_name,
    )
    if ticket_id is not None:
        ticket.id = ticket_id
    db.add(ticket)
    await db.commit()
    await db.refresh(ticket)
    return ticket


@pytest.fixture
def ticket_factory(db_session: AsyncSession, project: Project):
    """Create tickets in the test project: `await ticket_factory("Title", ...)`."""
    async def factory(title: str, **kwargs) -> Ticket:
        return await make_ticket(db_session, project, title, **kwargs)
    return factory


@pytest_asyncio.fixture
async def ticket(db_session: AsyncSession, project: Project) -> Ticket:
    """Ticket 'Fix login bug' with id 12345678-..., no epic."""
    return await make_ticket(db_session, project, "Fix login bug", ticket_id=SCENARIO_TICKET_ID)


@pytest_asyncio.fixture
async def epic(db_session: AsyncSession, project: Project) -> Epic:
    """Epic 'Auth Overhaul' with id abcdefab-..."""
    epic = Epic(id=SCENARIO_EPIC_ID, project_id=project.id, title="Auth Overhaul")
    db_session.add(epic)
    await db_session.commit()
    await db_session.refresh(epic)
    return epic


# ==========================================================================
# HTTP Client
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, git: FakeGitGateway) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database and git overrides.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_git_gateway] = lambda: git

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
