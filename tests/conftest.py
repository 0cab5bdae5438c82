from collections.abc import AsyncGenerator, Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk.config.settings import Settings
from helpdesk.infra.container import ServiceContainer
from helpdesk.infra.database import Database
from helpdesk.main import create_app

# Import models to ensure they're registered
from helpdesk.v1.automation import models as automation_models  # noqa: F401
from helpdesk.v1.core.registries import JobRegistry
from helpdesk.v1.infra.jobs import models as job_models  # noqa: F401
from helpdesk.v1.infra.jobs.dead_letter import InMemoryDeadLetterStore
from helpdesk.v1.infra.jobs.retry import RetryPolicy
from helpdesk.v1.infra.jobs.service import JobService
from helpdesk.v1.infra.jobs.store import InMemoryJobStore
from helpdesk.v1.tickets import models as ticket_models  # noqa: F401
from helpdesk.v1.tickets.models import Organization, Ticket, User
from helpdesk.v1.tickets.schemas import TicketChanges, TicketSnapshot, UserRef

T0 = datetime(2024, 1, 15, 9, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock shared by services under test."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current += timedelta(**delta)
        return self.current


class FakeTicketStore:
    """In-memory ticket store recording every write."""

    def __init__(self):
        self.tickets: dict[str, TicketSnapshot] = {}
        self.tags: dict[str, list[str]] = {}
        self.users: list[UserRef] = []
        self.open_counts: dict[str, int] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []

    def add_ticket(self, ticket: TicketSnapshot, tags: list[str] | None = None):
        self.tickets[ticket.id] = ticket
        self.tags[ticket.id] = list(tags or [])

    async def get_ticket(self, ticket_id: str) -> TicketSnapshot | None:
        return self.tickets.get(ticket_id)

    async def get_tag_names(self, ticket_id: str) -> list[str]:
        return list(self.tags.get(ticket_id, []))

    async def update_ticket(self, ticket_id: str, changes: TicketChanges) -> None:
        values = changes.model_dump(exclude_unset=True)
        self.updates.append((ticket_id, values))
        self.tickets[ticket_id] = self.tickets[ticket_id].model_copy(update=values)

    async def add_tag(self, ticket_id: str, tag_name: str) -> None:
        tags = self.tags.setdefault(ticket_id, [])
        if tag_name not in tags:
            tags.append(tag_name)

    async def remove_tag(self, ticket_id: str, tag_name: str) -> None:
        if tag_name in self.tags.get(ticket_id, []):
            self.tags[ticket_id].remove(tag_name)

    async def get_user(self, user_id: str) -> UserRef | None:
        return next((u for u in self.users if u.id == user_id), None)

    async def list_internal_users(self) -> list[UserRef]:
        return [u for u in self.users if u.is_internal]

    async def count_open_assigned(self, org_id: str, user_id: str) -> int:
        return self.open_counts.get(user_id, 0)


def make_ticket(**overrides: Any) -> TicketSnapshot:
    values = {
        "id": "ticket-1",
        "org_id": "org-1",
        "key": "HD-1",
        "subject": "Printer on fire",
        "description": "The office printer is on fire",
        "status": "NEW",
        "priority": "P3",
        "category": "SERVICE_REQUEST",
        "assignee_id": None,
        "created_at": T0,
        "updated_at": T0,
    }
    values.update(overrides)
    return TicketSnapshot.model_validate(values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def job_service(clock: FakeClock) -> JobService:
    return JobService(
        InMemoryJobStore(),
        InMemoryDeadLetterStore(),
        retry_policy=RetryPolicy(),
        clock=clock,
    )


@pytest.fixture
def ticket_store() -> FakeTicketStore:
    return FakeTicketStore()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        debug=False,
        auth_mode="none",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'helpdesk.db'}",
        job_backend="memory",
        export_storage_dir=str(tmp_path / "blobs"),
        export_base_url="http://files.test",
    )


@pytest.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, None]:
    db = Database(test_settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def session_factory(database: Database) -> async_sessionmaker[AsyncSession]:
    return database.SessionLocal


@pytest.fixture
async def seeded(session_factory) -> dict[str, Any]:
    """One org, two internal agents, one customer and three tickets."""
    async with session_factory() as session:
        org = Organization(
            id="org-1", name="Acme", sla_policy={"P2": {"response": 2}}
        )
        agent_a = User(id="agent-a", email="a@acme.test", name="Agent A", is_internal=True)
        agent_b = User(id="agent-b", email="b@acme.test", name="Agent B", is_internal=True)
        customer = User(id="cust-1", email="cust@example.test", name="Customer")
        session.add_all([org, agent_a, agent_b, customer])
        await session.flush()

        session.add_all(
            [
                Ticket(
                    id="t-1",
                    key="HD-1",
                    org_id="org-1",
                    subject="Invoice missing",
                    description="Where is my invoice?",
                    status="OPEN",
                    priority="P2",
                    category="SERVICE_REQUEST",
                    assignee_id="agent-a",
                    created_at=T0,
                    updated_at=T0,
                ),
                Ticket(
                    id="t-2",
                    key="HD-2",
                    org_id="org-1",
                    subject="VPN down",
                    description="Nobody can connect",
                    status="NEW",
                    priority="P1",
                    category="INCIDENT",
                    created_at=T0 + timedelta(hours=1),
                    updated_at=T0 + timedelta(hours=1),
                ),
                Ticket(
                    id="t-3",
                    key="HD-3",
                    org_id="org-1",
                    subject="Old request",
                    status="CLOSED",
                    priority="P4",
                    category="CHANGE_REQUEST",
                    assignee_id="agent-a",
                    created_at=T0 - timedelta(days=3),
                    updated_at=T0 - timedelta(days=3),
                ),
            ]
        )
        await session.commit()
    return {"org_id": "org-1"}


@pytest.fixture
def container(test_settings: Settings) -> ServiceContainer:
    return ServiceContainer(test_settings, registry=JobRegistry())


@pytest.fixture
def client(test_settings: Settings, container) -> Generator[TestClient, None, None]:
    """API client running the app lifespan against a fresh SQLite file."""
    app = create_app(test_settings, container=container)
    with TestClient(app) as test_client:
        yield test_client
