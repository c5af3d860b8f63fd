"""Shared test fixtures for the ingestion backend."""

from pathlib import Path

import pytest

from repo_events import EventRepo
from service_events import EventService


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'events.db'}"


@pytest.fixture
def repo(db_url: str) -> EventRepo:
    repo = EventRepo(db_url)
    repo.init_schema()
    return repo


@pytest.fixture
def svc(repo: EventRepo) -> EventService:
    return EventService(repo)


@pytest.fixture
def sample_event() -> dict:
    return {
        "source": "client_A",
        "payload": {
            "metric": "revenue",
            "amount": "1200",
            "timestamp": "2024/01/01",
        },
    }
