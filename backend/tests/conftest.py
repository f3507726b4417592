"""
Shared test fixtures for SprintSync tests.
"""
import pytest
from httpx import AsyncClient, ASGITransport

from sprintsync.infrastructure.config import Settings
from sprintsync.models.project import ProjectCreate, ProjectMemberCreate, ProjectRole
from sprintsync.models.task import TaskCreate
from sprintsync.services.container import ServiceContainer

OWNER = "owner-1"
MANAGER = "manager-1"
DEVELOPER = "developer-1"
OUTSIDER = "outsider-1"


class RecordingSubscriber:
    """Stand-in for a WebSocket connection that records what it is sent."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection closed")
        self.messages.append(data)

    def events(self, name=None):
        return [m for m in self.messages if name is None or m["event"] == name]


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        _env_file=None,
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'sprintsync.db'}",
        auth_secret="sprintsync-test-secret-0123456789abcdef",
        cache_ttl_seconds=300,
        enabled_features="custom-statuses",
    )


@pytest.fixture
async def container(test_settings):
    """Started service container; drains background hooks on teardown."""
    container = ServiceContainer(test_settings)
    await container.start()
    yield container
    await container.close()


@pytest.fixture
async def client(test_settings, container):
    """Async HTTP client for testing FastAPI endpoints."""
    from sprintsync.main import create_app

    app = create_app(test_settings)
    # ASGITransport does not run the lifespan; install the container directly
    app.state.container = container
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers(container):
    """Build bearer headers for a user id."""
    def _headers(user_id: str = OWNER) -> dict:
        return {"Authorization": f"Bearer {container.authenticator.issue_token(user_id)}"}
    return _headers


@pytest.fixture
def recorder():
    return RecordingSubscriber


@pytest.fixture
async def project(container):
    """Project owned by OWNER with a Manager and a Developer member."""
    project = await container.projects.create_project(ProjectCreate(name="Apollo"), OWNER)
    await container.projects.add_member(
        project.id, ProjectMemberCreate(user_id=MANAGER, role=ProjectRole.MANAGER), OWNER
    )
    await container.projects.add_member(
        project.id, ProjectMemberCreate(user_id=DEVELOPER, role=ProjectRole.DEVELOPER), OWNER
    )
    return project


@pytest.fixture
def make_task(container, project):
    """Create a task in the fixture project."""
    async def _make(title: str = "Task", status: str = None, assigned_to: str = None):
        return await container.tasks.create_task(
            project.id, TaskCreate(title=title, status=status, assigned_to=assigned_to), OWNER
        )
    return _make
