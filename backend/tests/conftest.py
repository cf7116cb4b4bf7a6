import os

# Keep the app's own engine off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import create_engine

import config
from app import app, get_service
from db import create_db_and_tables
from models import UserProjectState
from service import TrackerService
from storage import Storage

# 2024-06-01 12:00:00 UTC
NOON_JUNE_1 = 1_717_243_200_000


class FakeClock:
    """Injectable epoch-ms clock."""

    def __init__(self, now: int = NOON_JUNE_1):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds * 1000
        return self.now


def make_state(project_id, base=0, running_since=None, user_id="u1", comment=None):
    return UserProjectState(
        user_id=user_id,
        project_id=project_id,
        base_seconds=base,
        running_since=running_since,
        session_comment=comment,
    )


@pytest.fixture(autouse=True)
def utc_day_keys(monkeypatch):
    monkeypatch.setattr(config, "TZ_OFFSET_MINUTES", 0)


@pytest.fixture(scope="function")
def engine(tmp_path):
    """File-backed SQLite so worker threads get their own connections."""
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'tracker.db'}", connect_args={"check_same_thread": False}
    )
    create_db_and_tables(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def storage(engine):
    return Storage(engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(storage, clock):
    return TrackerService(storage, clock)


@pytest.fixture
def operator(service):
    return service.register_user("ana", "secret")


@pytest.fixture
def projects(service, operator):
    return [
        service.create_project(operator.id, "Phoenix Rebrand", "Design", "vibrant-red", True),
        service.create_project(operator.id, "Internal Audit", "Finance", "vibrant-blue", False),
    ]


@pytest.fixture(scope="function")
def client(service):
    """Create a test client with dependency override."""
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
